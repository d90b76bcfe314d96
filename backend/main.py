from fastapi import FastAPI, Request, status
import uvicorn
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from db.database import create_db_and_tables
from core.auth import fastapi_users, auth_backend, google_oauth_client
from core.config import settings
from core.log_config import configure_logging
from routers.auth_flows import router as auth_flows_router
from routers.pin import router as pin_router
from routers.products import router as products_router, sku_router
from routers.categories import router as categories_router
from routers.inventory import router as inventory_router, movements_router
from routers.orders import router as orders_router
from routers.suppliers import router as suppliers_router
from routers.warehouses import router as warehouses_router
from routers.users import router as users_router
from routers.company import router as company_router
from routers.reports import router as reports_router, search_router
from contextlib import asynccontextmanager
from schemas.users import UserRead

configure_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_db_and_tables()
    yield


app = FastAPI(
    title="Nexus Inventory API",
    description="Multi-tenant inventory management API",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())},
    )


# Authentication routes (fastapi-users)
app.include_router(fastapi_users.get_auth_router(auth_backend), prefix="/auth/jwt", tags=["auth"])
app.include_router(fastapi_users.get_reset_password_router(), prefix="/auth", tags=["auth"])
app.include_router(fastapi_users.get_verify_router(UserRead), prefix="/auth", tags=["auth"])
if google_oauth_client is not None:
    app.include_router(
        fastapi_users.get_oauth_router(
            google_oauth_client,
            auth_backend,
            settings.secret_key,
            associate_by_email=True,
            is_verified_by_default=True,
        ),
        prefix="/auth/google",
        tags=["auth"],
    )

# Sign-up, passwordless login and the inventory PIN
app.include_router(auth_flows_router, prefix="/auth", tags=["auth"])
app.include_router(pin_router, prefix="/pin", tags=["pin"])

# Catalog and stock
app.include_router(products_router, prefix="/products", tags=["products"])
app.include_router(sku_router, prefix="/skus", tags=["products"])
app.include_router(categories_router, prefix="/categories", tags=["categories"])
app.include_router(inventory_router, prefix="/inventory", tags=["inventory"])
app.include_router(movements_router, prefix="/stock-movements", tags=["inventory"])
app.include_router(warehouses_router, prefix="/warehouses", tags=["warehouses"])
app.include_router(suppliers_router, prefix="/suppliers", tags=["suppliers"])
app.include_router(orders_router, prefix="/orders", tags=["orders"])

# Company administration and reporting
app.include_router(users_router, prefix="/users", tags=["users"])
app.include_router(company_router, prefix="/company", tags=["company"])
app.include_router(reports_router, prefix="/reports", tags=["reports"])
app.include_router(search_router, prefix="/search", tags=["search"])

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
