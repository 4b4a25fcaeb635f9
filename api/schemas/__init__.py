"""
API Schemas
Pydantic request and response models shared by the routers
"""
