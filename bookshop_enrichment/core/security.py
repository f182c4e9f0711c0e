import hmac

from fastapi import Depends, Header, HTTPException, Query, status

from bookshop_enrichment.core.config import Settings, get_settings


async def require_cron_secret(
    settings: Settings = Depends(get_settings),
    authorization: str | None = Header(default=None, alias="Authorization"),
    token: str | None = Query(default=None),
) -> None:
    expected = settings.cron_secret_token
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="cron secret is not configured",
        )

    presented = token
    if authorization and authorization.lower().startswith("bearer "):
        presented = authorization.split(" ", maxsplit=1)[1].strip()

    if not presented or not hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
