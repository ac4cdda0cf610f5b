"""
HTTP gateway: admission, simulated provider and FastAPI app.
"""
