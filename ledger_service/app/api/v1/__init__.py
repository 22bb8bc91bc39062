from fastapi import APIRouter

from .credits import router as credits_router
from .games import router as games_router
from .payments import router as payments_router
from .rewards import offers_router, rewards_router
from .subscriptions import router as subscriptions_router
from .users import router as users_router

api_router = APIRouter()
# prefix 는 각 router 파일 내부에서 정의되어 있음
api_router.include_router(credits_router)
api_router.include_router(payments_router)
api_router.include_router(offers_router)
api_router.include_router(rewards_router)
api_router.include_router(games_router)
api_router.include_router(subscriptions_router)
api_router.include_router(users_router)
