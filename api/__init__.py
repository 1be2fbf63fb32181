"""
FastAPI REST API for the Book Records service.

This package provides:
- User registration, login and bearer token refresh
- Book CRUD restricted by the ownership rule
- MongoDB persistence for users and books
"""
