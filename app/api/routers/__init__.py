"""
FastAPI routers for the ingestion service.

``uploads`` owns the file lifecycle and history, ``analyze_data`` runs
classification on rows the client already parsed, and ``save_data``
commits confirmed records into the target tables.
"""
