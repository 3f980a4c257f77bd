from fastapi import APIRouter

from . import ads, auth, categories, messages, users

api_router = APIRouter()
api_router.include_router(auth.router)
api_router.include_router(ads.router)
api_router.include_router(categories.router)
api_router.include_router(messages.router)
api_router.include_router(users.router)
