"""
FastAPI routers for the member import service.
"""
