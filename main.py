from __future__ import annotations

import secrets
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Query, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from rdso import db
from rdso.api_models import InstanceView, PassResultModel
from rdso.controller import Busy, Controller
from rdso.kube_ops import cluster_controller
from rdso.reconciler import PassResult
from rdso.resources import Identity
from rdso.settings import Settings, settings

security = HTTPBasic(auto_error=False)


def _view(identity: Identity, status_doc: dict, last: PassResult | None) -> InstanceView:
    return InstanceView(
        namespace=identity.namespace,
        name=identity.name,
        status=status_doc,
        last_pass=last.to_model() if last else None,
    )


def create_app(controller: Controller | None = None, config: Settings = settings, run_loop: bool | None = None) -> FastAPI:
    """Build the admin API.

    Without a controller one is wired against the cluster at startup and its
    resync loop is started; an injected controller is only started when
    ``run_loop`` asks for it.
    """
    if run_loop is None:
        run_loop = controller is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db.init_db()
        ctl = app.state.controller or cluster_controller(config)
        app.state.controller = ctl
        if run_loop:
            ctl.start()
        try:
            yield
        finally:
            if run_loop:
                ctl.stop()

    app = FastAPI(title="RestDataServices Operator", version="1.0.0", lifespan=lifespan)
    app.state.controller = controller

    def get_controller() -> Controller:
        return app.state.controller

    def require_admin(credentials: HTTPBasicCredentials | None = Depends(security)) -> str:
        if not config.admin_user:
            return "anonymous"
        if credentials is None or not (
            secrets.compare_digest(credentials.username, config.admin_user)
            and secrets.compare_digest(credentials.password, config.admin_password or "")
        ):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid credentials",
                headers={"WWW-Authenticate": "Basic"},
            )
        return credentials.username

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    @app.get("/instances", response_model=list[InstanceView])
    def list_instances(ctl: Controller = Depends(get_controller)) -> list[InstanceView]:
        return [_view(*row) for row in ctl.list_instances()]

    @app.get("/instances/{namespace}/{name}", response_model=InstanceView)
    def get_instance(namespace: str, name: str, ctl: Controller = Depends(get_controller)) -> InstanceView:
        found = ctl.instance(Identity(namespace=namespace, name=name))
        if found is None:
            raise HTTPException(status_code=404, detail=f"{namespace}/{name} not found")
        return _view(*found)

    @app.post("/instances/{namespace}/{name}/reconcile", response_model=PassResultModel)
    def reconcile(
        namespace: str,
        name: str,
        ctl: Controller = Depends(get_controller),
        user: str = Depends(require_admin),
    ) -> PassResultModel:
        identity = Identity(namespace=namespace, name=name)
        try:
            result = ctl.reconcile_now(identity)
        except Busy:
            raise HTTPException(status_code=409, detail=f"a pass for {identity} is already running")
        db.log_event("INFO", f"Manual reconcile by {user}: {result.outcome.value}", namespace=namespace, instance=name, reason="ManualReconcile")
        return result.to_model()

    @app.get("/events")
    def events(limit: int = Query(100, ge=1, le=1000)) -> list[dict]:
        return db.latest_events(limit=limit)

    @app.get("/passes")
    def passes(limit: int = Query(100, ge=1, le=1000)) -> list[dict]:
        return db.latest_passes(limit=limit)

    return app


app = create_app()
