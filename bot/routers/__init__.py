from aiogram import Router


def make_root_router() -> Router:
    from .basic import basic_router
    from .admin import admin_router

    router = Router()
    router.include_router(basic_router)
    router.include_router(admin_router)
    return router
