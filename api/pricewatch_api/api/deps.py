from collections.abc import Callable

from fastapi import Header

from pricewatch.config import WorkerSettings, get_settings as get_worker_settings
from pricewatch.oracles.registry import OracleSet, build_oracles, default_mode
from pricewatch_api.core.config import get_settings
from pricewatch_api.core.errors import ApiError, AppHTTPException


def require_admin_token(x_admin_token: str | None = Header(default=None)) -> None:
    settings = get_settings()
    if x_admin_token != settings.admin_token:
        raise AppHTTPException(status_code=401, error=ApiError(code="unauthorized", message="Invalid admin token"))


def get_pipeline_settings() -> WorkerSettings:
    return get_worker_settings()


def get_oracle_factory() -> Callable[[WorkerSettings], OracleSet]:
    def factory(settings: WorkerSettings) -> OracleSet:
        return build_oracles(default_mode(settings), settings)

    return factory
