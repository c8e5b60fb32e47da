from fastapi import Depends, FastAPI
import uvicorn
from api.routers.system import routes as SystemRoutes
from api.routers.affiliate import routes as AffiliateRoutes
from api.routers.codes import routes as CodeRoutes
from api.routers.payments import routes as PaymentRoutes
from api.routers.payouts import routes as PayoutRoutes
from api.security import require_service_key
from config import get_env
from logging_config import setup_logging


class FastAPIManager:
    def __init__(self):
        setup_logging(get_env().LOG_LEVEL)
        # формат версии: версия.подверсия:месяц.год.число:stable (beta, stable)
        self.api = FastAPI(
            version="1.0:10.26.19:beta",
            title="Партнёрская программа стилистов",
            description=(
                "Сервис партнёрских кодов маркетплейса стилистов: проверка кодов, атрибуция посетителей "
                "(cookie и записи в БД), скидка на оформлении, комиссии по оплаченным бронированиям "
                "и пакетные выплаты стилистам через YooKassa. Служебные маршруты требуют ключ сервиса."
            ),
        )
        self.add_routers()

    def add_routers(self):
        self.api.include_router(
            SystemRoutes.router
        )
        self.api.include_router(
            AffiliateRoutes.router,
            prefix="/affiliate",
            tags=["Партнёрская атрибуция"]
        )
        self.api.include_router(
            CodeRoutes.router,
            prefix="/codes",
            dependencies=[Depends(require_service_key)],
            tags=["Партнёрские коды"]
        )
        self.api.include_router(
            PaymentRoutes.router,
            prefix="/pay",
            tags=["Платежи"]
        )
        self.api.include_router(
            PayoutRoutes.router,
            prefix="/payouts",
            dependencies=[Depends(require_service_key)],
            tags=["Комиссии и выплаты"]
        )

    def start_server(self):
        uvicorn.run(self.api, host="0.0.0.0", port=8000)

    def get_app(self) -> FastAPI:
        return self.api
