from fastapi import FastAPI
from fastapi import Request
from fastapi.responses import JSONResponse
from app.api.routes import router, build_attempt
from app.moat.errors import BusyError, StateError
from app.settings import settings
from app.observability.logging import log

app = FastAPI(title="Moat Bridge Client")

app.state.attempt_factory = build_attempt
app.state.moat_attempt = None

app.include_router(router)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.exception_handler(BusyError)
async def busy_handler(request: Request, exc: BusyError):
    return JSONResponse(status_code=429, content={"detail": str(exc)})


@app.exception_handler(StateError)
async def state_error_handler(request: Request, exc: StateError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


log(event="boot", moatBaseUrl=settings.MOAT_BASE_URL,
    socksDefault=f"{settings.SOCKS_PROXY_HOST_DEFAULT}:{settings.SOCKS_PROXY_PORT_DEFAULT}")
