"""FastAPI JSON surface for the TimeBank ledger.

The API renders no pages: a UI collaborator calls these endpoints and draws
the wallets itself. Inputs are form-encoded, responses are JSON.

Run with ``uvicorn --factory timebank.webapp:create_app``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Form, Request
from fastapi.responses import JSONResponse

from ..api import ApiExporter
from ..exceptions import InvalidTransitionError, NotFoundError, PersistenceError, TimeBankError
from ..holiday import CancellationPrompt, TransferResult
from ..models import DEFAULT_USER_ID
from ..service import TimeBank
from ..tracking import TransitionResult
from .config import APP_TITLE, LOG_PATH, SQLITE_FILE_NAME, STORAGE_KEY
from .persistence import SQLModelStorage, make_engine


def _status_for(error: Optional[TimeBankError]) -> int:
    if error is None:
        return 200
    if isinstance(error, NotFoundError):
        return 404
    return 409


def default_bank(sqlite_path: str = SQLITE_FILE_NAME) -> TimeBank:
    storage = SQLModelStorage(make_engine(sqlite_path), STORAGE_KEY)
    return TimeBank(storage, log_path=Path(LOG_PATH) if LOG_PATH else None)


def create_app(bank: TimeBank | None = None) -> FastAPI:
    """Build the API around ``bank``, or around a SQLite-backed bank by default."""

    bank = bank if bank is not None else default_bank()
    exporter = ApiExporter()
    app = FastAPI(title=APP_TITLE)
    app.state.bank = bank

    @app.exception_handler(NotFoundError)
    async def _not_found(_: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse({"error": str(exc)}, status_code=404)

    @app.exception_handler(InvalidTransitionError)
    async def _invalid(_: Request, exc: InvalidTransitionError) -> JSONResponse:
        return JSONResponse({"error": str(exc)}, status_code=409)

    @app.exception_handler(PersistenceError)
    async def _not_saved(_: Request, exc: PersistenceError) -> JSONResponse:
        return JSONResponse({"error": str(exc)}, status_code=503)

    @app.exception_handler(ValueError)
    async def _bad_value(_: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse({"error": str(exc)}, status_code=400)

    def transition_response(result: TransitionResult) -> JSONResponse:
        return JSONResponse(exporter.transition_snapshot(result), status_code=_status_for(result.error))

    def transfer_response(result: TransferResult, **extra: object) -> JSONResponse:
        payload = exporter.transfer_snapshot(result)
        payload.update(extra)
        return JSONResponse(payload, status_code=_status_for(result.error))

    @app.get("/health")
    def health() -> dict:
        store = bank.store
        return {
            "status": "ok" if store.load_error is None and store.save_error is None else "degraded",
            "users": len(store.get_users()),
        }

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    @app.get("/users")
    def list_users() -> dict:
        return {
            "users": [exporter.user_snapshot(user) for user in bank.users()],
            "currentUserId": bank.store.get_current_user_id(),
        }

    @app.post("/users", status_code=201)
    def create_user(name: str = Form(...), nickname: str = Form("")) -> dict:
        user_id = bank.add_user(name, nickname)
        return exporter.user_snapshot(bank.store.require_user(user_id))

    @app.get("/users/{user_id}")
    def get_user(user_id: str) -> dict:
        return exporter.user_snapshot(bank.store.require_user(user_id))

    @app.post("/users/{user_id}")
    def update_user(
        user_id: str,
        name: Optional[str] = Form(None),
        nickname: Optional[str] = Form(None),
    ) -> dict:
        data: dict = {"id": user_id}
        if name is not None:
            data["name"] = name
        if nickname is not None:
            data["nickname"] = nickname
        if not bank.update_user(data):
            raise NotFoundError(f"User '{user_id}' does not exist.")
        return exporter.user_snapshot(bank.store.require_user(user_id))

    @app.delete("/users/{user_id}")
    def delete_user(user_id: str) -> JSONResponse:
        bank.store.require_user(user_id)
        deleted = bank.delete_user(user_id)
        status = 200 if deleted else 409
        body: dict = {"deleted": deleted}
        if user_id == DEFAULT_USER_ID:
            body["error"] = "The default user cannot be removed."
        return JSONResponse(body, status_code=status)

    @app.post("/session/user")
    def select_user(user_id: str = Form(...)) -> dict:
        bank.select_user(user_id)
        return {"currentUserId": bank.current_user_id()}

    # ------------------------------------------------------------------
    # Settings and wallets
    # ------------------------------------------------------------------
    @app.get("/settings")
    def get_settings() -> dict:
        return bank.settings().as_dict()

    @app.post("/settings")
    def update_settings(
        auto_deposit_to_holiday: Optional[bool] = Form(None),
        weekend_time_to_next_week: Optional[bool] = Form(None),
        holiday_bonus_percentage: Optional[float] = Form(None),
        weekly_bonus_percentage: Optional[float] = Form(None),
    ) -> dict:
        changes = {
            key: value
            for key, value in {
                "auto_deposit_to_holiday": auto_deposit_to_holiday,
                "weekend_time_to_next_week": weekend_time_to_next_week,
                "holiday_bonus_percentage": holiday_bonus_percentage,
                "weekly_bonus_percentage": weekly_bonus_percentage,
            }.items()
            if value is not None
        }
        return bank.update_settings(**changes).as_dict()

    @app.get("/wallet")
    def wallet() -> dict:
        return exporter.wallet_snapshot(bank.wallet_summary())

    # ------------------------------------------------------------------
    # Tracking and usage
    # ------------------------------------------------------------------
    @app.get("/tracking")
    def tracking_status() -> dict:
        forced = bank.tick()
        payload = exporter.tracking_snapshot(bank.tracker())
        payload["forcedStop"] = exporter.transition_snapshot(forced) if forced else None
        return payload

    @app.post("/tracking/start")
    def start_tracking() -> JSONResponse:
        return transition_response(bank.start_tracking())

    @app.post("/tracking/description")
    def describe_activity(description: str = Form("")) -> JSONResponse:
        return transition_response(bank.tracker().set_activity_description(description))

    @app.post("/tracking/stop")
    def stop_tracking(description: str = Form("")) -> JSONResponse:
        return transition_response(bank.stop_tracking(description or None))

    @app.post("/usage/start")
    def start_usage() -> JSONResponse:
        return transition_response(bank.start_time_usage())

    @app.post("/usage/stop")
    def stop_usage() -> JSONResponse:
        return transition_response(bank.stop_time_usage())

    # ------------------------------------------------------------------
    # Holiday wallet
    # ------------------------------------------------------------------
    @app.post("/activities/{activity_id}/holiday")
    def transfer_to_holiday(activity_id: str) -> JSONResponse:
        return transfer_response(bank.transfer_to_holiday(activity_id))

    @app.post("/deposits/{deposit_id}/cancel")
    def cancel_deposit(deposit_id: str, confirm: bool = Form(False)) -> JSONResponse:
        shown: list[CancellationPrompt] = []

        def answer(prompt: CancellationPrompt) -> bool:
            shown.append(prompt)
            return confirm

        result = bank.cancel_deposit(deposit_id, answer)
        prompt = (
            {"title": shown[0].title, "message": shown[0].message, "forfeitedBonus": shown[0].forfeited_bonus}
            if shown
            else None
        )
        return transfer_response(result, prompt=prompt)

    @app.get("/notices")
    def notices() -> dict:
        return {"notices": [notice.as_dict() for notice in bank.notices.pop_all()]}

    return app


__all__ = ["create_app", "default_bank"]
