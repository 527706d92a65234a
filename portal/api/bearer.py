from fastapi.security import HTTPBearer

# Admin endpoints carry the admin setup key as a bearer credential
bearer_admin = HTTPBearer(scheme_name="Admin HTTPBearer", auto_error=False)
