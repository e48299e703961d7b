# ride_dispatch/core/__init__.py
"""
Доменный слой: ценообразование, подбор водителей, заявки, торг.
"""
