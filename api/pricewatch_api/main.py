from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pricewatch.errors import PricewatchError
from pricewatch.models import Base
from pricewatch_api.api.routes import products, recommendations, runs
from pricewatch_api.core.config import get_settings
from pricewatch_api.core.errors import ApiError, status_for
from pricewatch_api.db.session import engine

settings = get_settings()
app = FastAPI(title=settings.app_name)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup() -> None:
    Base.metadata.create_all(bind=engine)


@app.exception_handler(RequestValidationError)
def request_validation_exception_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"code": "validation_error", "message": "Invalid request", "details": exc.errors()})


@app.exception_handler(PricewatchError)
def domain_exception_handler(_: Request, exc: PricewatchError) -> JSONResponse:
    return JSONResponse(status_code=status_for(exc), content={"detail": ApiError.from_domain(exc).to_dict()})


app.include_router(runs.router)
app.include_router(recommendations.router)
app.include_router(products.router)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
