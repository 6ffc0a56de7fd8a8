# capacity_engine/api/main.py
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from capacity_engine.api.routes.monitoring import router as monitoring_router
from capacity_engine.api.routes.servers import router as servers_router
from capacity_engine.core.errors import CapacityValidationError

app = FastAPI(title="Capacity Engine API")


@app.exception_handler(CapacityValidationError)
def capacity_validation_error(request: Request, exc: CapacityValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(monitoring_router)
app.include_router(servers_router)
