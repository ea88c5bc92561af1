from __future__ import annotations

import asyncio
import json
import os
import uuid
from contextlib import asynccontextmanager
from datetime import date as D, datetime, timezone

import structlog
from fastapi import Body, Depends, FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from jwt.exceptions import InvalidTokenError
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.logging import configure_logging
from core.tasks import drain_background_tasks
from domain.calculations import MAX_GOAL_KCAL, MIN_GOAL_KCAL, recommended_calories
from domain.entities import FoodAnalysis, RejectReason
from domain.errors import (
    AlreadyProcessedError,
    BankLookupError,
    DailyLimitError,
    DomainError,
    InvalidInputError,
    NotFoundError,
    StorageUnavailableError,
)
from domain.use_cases.daily_limit import UsageInput, check_daily_limit
from infra.cache.redis import redis_client
from infra.db.models import ActivityLevelEnum, GenderEnum, GoalEnum
from infra.db.repositories.meal_repo import MealRepo
from infra.db.repositories.user_repo import UserRepo
from infra.db.session import get_session
from infra.storage.object_storage import STORAGE_ERRORS, ObjectStorage, object_key_for
from services.subscriptions.callbacks import handle_admin_callback
from services.subscriptions.workflow import SubscriptionWorkflow
from services.vision.openai_vision import OpenAIVisionAnalyzer, normalize_ingredients
from services.vision.processing import preprocess_photo

from .auth import check_init_data, issue_token, parse_init_data_user, refresh_token
from .deps import get_notifier, get_storage, get_vision, get_workflow, require_admin
from .schemas import (
    AnalysisOut,
    ApproveInput,
    AuthInput,
    AuthOut,
    DecisionOut,
    MealCreatedOut,
    MealsDayOut,
    RefreshInput,
    RejectInput,
    SubscriptionRequestOut,
    SubscriptionStatusOut,
    SuccessOut,
    Totals,
    UserUpdateInput,
    UserUpdateOut,
    VerifyInput,
    VerifyOut,
    meal_out,
    payment_out,
    user_out,
)


log = structlog.get_logger("api")

ERROR_STATUS: dict[type[DomainError], int] = {
    InvalidInputError: 400,
    NotFoundError: 404,
    DailyLimitError: 403,
    StorageUnavailableError: 500,
    BankLookupError: 502,
}


async def _metric(name: str) -> None:
    try:
        await redis_client.incr(f"metrics:{name}")
    except (RedisError, OSError) as e:
        log.debug("metric_skipped", metric=name, error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # let detached notifications finish before the bot session closes
    await drain_background_tasks(timeout=settings.external_timeout_sec)
    notifier = get_notifier() if get_notifier.cache_info().currsize else None
    if notifier is not None:
        await notifier.close()


def create_app() -> FastAPI:
    configure_logging(settings.log_level, json_logs=settings.is_production)
    app = FastAPI(title="Calorie AI API", version="0.1.0", lifespan=lifespan)
    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins.split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Local object storage is served by the API itself
    if not (settings.s3_endpoint_url and settings.s3_bucket):
        os.makedirs(settings.media_root, exist_ok=True)
        app.mount("/media", StaticFiles(directory=settings.media_root), name="media")

    @app.middleware("http")
    async def bind_trace(request: Request, call_next):
        trace_id = request.headers.get("X-Trace-Id") or uuid.uuid4().hex[:12]
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(trace_id=trace_id)
        response = await call_next(request)
        response.headers["X-Trace-Id"] = trace_id
        return response

    # Errors

    @app.exception_handler(AlreadyProcessedError)
    async def on_already_processed(request: Request, exc: AlreadyProcessedError) -> JSONResponse:
        # a resolved request is a no-op for the caller, not a failure
        body = DecisionOut(success=True, status=exc.status, message=str(exc))
        return JSONResponse(status_code=200, content=body.model_dump(mode="json", by_alias=True))

    @app.exception_handler(DomainError)
    async def on_domain_error(request: Request, exc: DomainError) -> JSONResponse:
        status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
        log.info("domain_error", path=request.url.path, code=exc.code, status=status)
        return JSONResponse(status_code=status, content={"error": str(exc) or exc.code, "code": exc.code})

    @app.exception_handler(RequestValidationError)
    async def on_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid input", "code": InvalidInputError.code, "details": jsonable_errors(exc)},
        )

    @app.exception_handler(Exception)
    async def on_unexpected(request: Request, exc: Exception) -> JSONResponse:
        log.error("unhandled_error", path=request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "Internal error"})

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    # Auth

    @app.post("/api/auth", response_model=AuthOut)
    async def auth(payload: AuthInput, session: AsyncSession = Depends(get_session)) -> AuthOut:
        if not check_init_data(payload.init_data):
            raise HTTPException(status_code=401, detail="Invalid Telegram data")
        tg_user = parse_init_data_user(payload.init_data)
        if tg_user is None:
            raise HTTPException(status_code=401, detail="No user in initData")
        user = await UserRepo(session).upsert_from_telegram(
            telegram_id=int(tg_user["id"]),
            first_name=tg_user.get("first_name"),
            last_name=tg_user.get("last_name"),
            username=tg_user.get("username"),
        )
        token, exp = issue_token(user.id, user.telegram_id)
        log.info("webapp_auth", user_id=user.id)
        return AuthOut(user=user_out(user), token=token, expires_at=exp)

    @app.post("/api/auth/refresh")
    def auth_refresh(payload: RefreshInput) -> dict:
        try:
            token, exp = refresh_token(payload.token)
        except InvalidTokenError:
            raise HTTPException(status_code=401, detail="Invalid token")
        return {"token": token, "expiresAt": exp}

    # User

    @app.get("/api/user/{user_id}")
    async def get_user(user_id: int, session: AsyncSession = Depends(get_session)) -> dict:
        user = await UserRepo(session).get(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return {"user": user_out(user).model_dump(mode="json", by_alias=True)}

    @app.patch("/api/user/{user_id}", response_model=UserUpdateOut)
    async def update_user(
        user_id: int, payload: UserUpdateInput, session: AsyncSession = Depends(get_session)
    ) -> UserUpdateOut:
        users = UserRepo(session)
        user = await users.get(user_id)
        if user is None:
            raise NotFoundError("User not found")
        fields = payload.model_dump(exclude_unset=True)
        explicit_goal = fields.pop("daily_calorie_goal", None)
        data: dict = {}
        for key, value in fields.items():
            if key == "gender" and value is not None:
                value = GenderEnum(value)
            elif key == "activity" and value is not None:
                value = ActivityLevelEnum(value)
            elif key == "goal" and value is not None:
                value = GoalEnum(value)
            data[key] = value

        def current(name: str):
            v = data[name] if name in data else getattr(user, name)
            return v.value if hasattr(v, "value") else v

        computed = recommended_calories(
            weight_kg=current("weight_kg"),
            height_cm=current("height_cm"),
            age=current("age"),
            gender=current("gender"),
            activity=current("activity"),
            goal=current("goal"),
        )
        if explicit_goal is not None:
            if not MIN_GOAL_KCAL <= explicit_goal <= MAX_GOAL_KCAL:
                raise InvalidInputError(f"Invalid goal ({MIN_GOAL_KCAL}-{MAX_GOAL_KCAL})")
            data["daily_calorie_goal"] = explicit_goal
        elif computed:
            data["daily_calorie_goal"] = computed
        user = await users.update_profile(user_id, data)
        log.info("user_profile_updated", user_id=user_id, fields=sorted(data))
        return UserUpdateOut(user=user_out(user), recommended=computed)  # type: ignore[arg-type]

    @app.delete("/api/user/{user_id}", response_model=SuccessOut)
    async def delete_user(user_id: int, session: AsyncSession = Depends(get_session)) -> SuccessOut:
        if not await UserRepo(session).delete(user_id):
            raise NotFoundError("User not found")
        log.info("user_reset", user_id=user_id)
        return SuccessOut()

    # Analysis and meals

    @app.post("/api/analyze", response_model=AnalysisOut)
    async def analyze(
        image: UploadFile | None = File(None),
        userId: int | None = Form(None),
        session: AsyncSession = Depends(get_session),
        vision: OpenAIVisionAnalyzer = Depends(get_vision),
        storage: ObjectStorage = Depends(get_storage),
    ) -> AnalysisOut:
        if image is None:
            raise InvalidInputError("No image uploaded")
        if userId is None:
            raise InvalidInputError("User ID required for analysis")
        users = UserRepo(session)
        user = await users.get(userId)
        if user is None:
            raise NotFoundError("User not found")

        now = datetime.now(timezone.utc)
        decision = check_daily_limit(
            UsageInput(
                is_premium=user.is_premium,
                subscription_expires_at=user.subscription_expires_at,
                daily_request_count=user.daily_request_count,
                last_request_date=user.last_request_date,
                limit=settings.free_daily_limit,
            ),
            now,
        )
        if not decision.allowed:
            log.info("daily_limit_reached", user_id=userId, used=decision.used_today)
            raise DailyLimitError("Daily limit reached")
        if decision.new_count is not None:
            await users.set_usage(userId, count=decision.new_count, at=now)

        raw = await image.read()
        processed = await asyncio.to_thread(
            preprocess_photo, raw, image.content_type or "image/jpeg", settings.max_image_px
        )
        key = object_key_for(f"meals/{userId}", processed.content_type)
        log.info("analyze_start", user_id=userId, unlimited=decision.unlimited)
        try:
            analysis, photo_url = await asyncio.gather(
                vision.analyze(processed.bytes, processed.content_type),
                asyncio.to_thread(storage.put_bytes, key, processed.bytes, processed.content_type),
            )
        except STORAGE_ERRORS as e:
            raise StorageUnavailableError("Failed to store image") from e
        await _metric("analyze")
        return AnalysisOut(**analysis.__dict__, photo_url=photo_url)

    @app.post("/api/meals", response_model=MealCreatedOut)
    async def create_meal(
        userId: int | None = Form(None),
        photo: UploadFile | None = File(None),
        photoUrl: str | None = Form(None),
        name: str | None = Form(None),
        calories: float | None = Form(None),
        protein: float | None = Form(None),
        fat: float | None = Form(None),
        carbs: float | None = Form(None),
        ingredients: str | None = Form(None),
        weightG: float | None = Form(None),
        confidence: float | None = Form(None),
        date: str | None = Form(None),
        session: AsyncSession = Depends(get_session),
        vision: OpenAIVisionAnalyzer = Depends(get_vision),
        storage: ObjectStorage = Depends(get_storage),
    ) -> MealCreatedOut:
        if userId is None or (photo is None and not photoUrl):
            raise InvalidInputError("Missing data (photo or photoUrl required)")
        if await UserRepo(session).get(userId) is None:
            raise NotFoundError("User not found")
        try:
            on_date = D.fromisoformat(date) if date else D.today()
        except ValueError:
            raise InvalidInputError("Invalid date format")

        photo_bytes: bytes | None = None
        content_type = "image/jpeg"
        photo_url = photoUrl
        if photo is not None:
            processed = await asyncio.to_thread(
                preprocess_photo, await photo.read(), photo.content_type or "image/jpeg", settings.max_image_px
            )
            photo_bytes, content_type = processed.bytes, processed.content_type
            key = object_key_for(f"meals/{userId}", content_type)
            try:
                photo_url = await asyncio.to_thread(storage.put_bytes, key, photo_bytes, content_type)
            except STORAGE_ERRORS as e:
                raise StorageUnavailableError("Failed to store image") from e

        if name and calories is not None:
            # analysis already done by /api/analyze on the client side
            analysis = FoodAnalysis(
                name=name,
                calories=int(round(calories)),
                protein=float(protein or 0),
                fat=float(fat or 0),
                carbs=float(carbs or 0),
                ingredients=_parse_ingredients(ingredients),
                weight_g=int(round(weightG)) if weightG else None,
                confidence=confidence if confidence else None,
            )
        elif photo_bytes is not None:
            analysis = await vision.analyze(photo_bytes, content_type)
        else:
            analysis = await vision.analyze_url(photo_url)  # type: ignore[arg-type]

        meal = await MealRepo(session).create_meal(
            user_id=userId, analysis=analysis, photo_url=photo_url, on_date=on_date
        )
        log.info("meal_created", user_id=userId, meal_id=meal.id, calories=meal.calories)
        await _metric("meals:create")
        return MealCreatedOut(meal=meal_out(meal))

    async def _meals_for(session: AsyncSession, user_id: int, on_date: D) -> MealsDayOut:
        meals = await MealRepo(session).list_by_date(user_id=user_id, on_date=on_date)
        return MealsDayOut(meals=[meal_out(m) for m in meals], totals=Totals(**MealRepo.totals(meals)))

    @app.get("/api/meals/today/{user_id}", response_model=MealsDayOut)
    async def meals_today(user_id: int, session: AsyncSession = Depends(get_session)) -> MealsDayOut:
        return await _meals_for(session, user_id, D.today())

    @app.get("/api/meals/date/{user_id}", response_model=MealsDayOut)
    async def meals_by_date(
        user_id: int, date: str | None = None, session: AsyncSession = Depends(get_session)
    ) -> MealsDayOut:
        try:
            on_date = D.fromisoformat(date or "")
        except ValueError:
            raise InvalidInputError("Invalid date format")
        return await _meals_for(session, user_id, on_date)

    @app.delete("/api/meals/{meal_id}", response_model=SuccessOut)
    async def delete_meal(
        meal_id: int,
        session: AsyncSession = Depends(get_session),
        storage: ObjectStorage = Depends(get_storage),
    ) -> SuccessOut:
        repo = MealRepo(session)
        meal = await repo.get_by_id(meal_id)
        if meal is None:
            raise NotFoundError("Not found")
        if meal.photo_url:
            # delete_url logs and swallows its own failures
            await asyncio.to_thread(storage.delete_url, meal.photo_url)
        await repo.delete_meal(meal_id)
        log.info("meal_deleted", meal_id=meal_id)
        await _metric("meals:delete")
        return SuccessOut()

    # Subscriptions

    @app.post("/api/subscriptions/request", response_model=SubscriptionRequestOut)
    async def subscription_request(
        userId: int | None = Form(None),
        receipt: UploadFile | None = File(None),
        phoneNumber: str | None = Form(None),
        session: AsyncSession = Depends(get_session),
        workflow: SubscriptionWorkflow = Depends(get_workflow),
    ) -> SubscriptionRequestOut:
        if userId is None or receipt is None:
            raise InvalidInputError("User ID and Receipt Image required")
        data = await receipt.read()
        if len(data) > settings.receipt_max_bytes:
            raise InvalidInputError("Receipt image is too large")
        req = await workflow.request_manual(
            session,
            user_id=userId,
            receipt=data,
            content_type=receipt.content_type or "image/jpeg",
            phone_number=(phoneNumber or "").strip() or None,
        )
        return SubscriptionRequestOut(request=payment_out(req))

    @app.get("/api/subscriptions/status/{user_id}", response_model=SubscriptionStatusOut)
    async def subscription_status(user_id: int, session: AsyncSession = Depends(get_session)) -> SubscriptionStatusOut:
        return SubscriptionStatusOut.model_validate(await SubscriptionWorkflow.status(session, user_id))

    @app.get("/api/subscriptions/pending", dependencies=[Depends(require_admin)])
    async def subscription_pending(session: AsyncSession = Depends(get_session)) -> list[dict]:
        requests = await SubscriptionWorkflow.list_pending(session)
        return [payment_out(r, with_user=True).model_dump(mode="json", by_alias=True) for r in requests]

    @app.post("/api/subscriptions/approve", response_model=DecisionOut, dependencies=[Depends(require_admin)])
    async def subscription_approve(
        payload: ApproveInput,
        session: AsyncSession = Depends(get_session),
        workflow: SubscriptionWorkflow = Depends(get_workflow),
    ) -> DecisionOut:
        decision = await workflow.approve(session, payload.request_id)
        return DecisionOut(status=decision.status.value, expires_at=decision.expires_at)

    @app.post("/api/subscriptions/reject", response_model=DecisionOut, dependencies=[Depends(require_admin)])
    async def subscription_reject(
        payload: RejectInput,
        session: AsyncSession = Depends(get_session),
        workflow: SubscriptionWorkflow = Depends(get_workflow),
    ) -> DecisionOut:
        decision = await workflow.reject(session, payload.request_id, RejectReason(payload.reason))
        return DecisionOut(status=decision.status.value)

    @app.post("/api/subscriptions/verify-dc", response_model=VerifyOut)
    async def subscription_verify_dc(
        payload: VerifyInput,
        session: AsyncSession = Depends(get_session),
        workflow: SubscriptionWorkflow = Depends(get_workflow),
    ) -> VerifyOut:
        result = await workflow.verify_bank_payment(session, payload.user_id)
        return VerifyOut(success=result.success, expires_at=result.expires_at, message=result.message)

    # Telegram

    @app.post("/api/webhooks/telegram")
    async def telegram_webhook(
        update: dict = Body(...),
        x_telegram_bot_api_secret_token: str | None = Header(None),
        session: AsyncSession = Depends(get_session),
        workflow: SubscriptionWorkflow = Depends(get_workflow),
    ) -> dict:
        if settings.telegram_webhook_secret and x_telegram_bot_api_secret_token != settings.telegram_webhook_secret:
            raise HTTPException(status_code=401, detail="Unauthorized")
        cq = update.get("callback_query")
        if not cq:
            return {"ok": True}
        message = cq.get("message") or {}
        chat_id = (message.get("chat") or {}).get("id")
        if settings.admin_chat_id is not None and chat_id != settings.admin_chat_id:
            log.warning("callback_from_foreign_chat", chat_id=chat_id)
            return {"ok": True}
        outcome = await handle_admin_callback(
            session,
            workflow,
            workflow.notifier,
            callback_id=str(cq.get("id")),
            data=cq.get("data"),
            chat_id=chat_id,
            message_id=message.get("message_id"),
            caption=message.get("caption"),
        )
        log.info("admin_callback_handled", outcome=outcome)
        return {"ok": True, "outcome": outcome}

    return app


app = create_app()


def _parse_ingredients(raw: str | None) -> list[str]:
    if not raw:
        return []
    try:
        return normalize_ingredients(json.loads(raw))
    except ValueError:
        return [raw]


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in exc.errors()]
