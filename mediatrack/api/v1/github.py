"""GitHub integration endpoints: connection check, repository info, issues."""

from fastapi import APIRouter, HTTPException, Query

from mediatrack.jobs.errors import RemoteStoreError, StoreNotConfiguredError

router = APIRouter(prefix="/github")

# Wired in during lifespan
_store = None


def set_store(store):
    global _store
    _store = store


def _require_store():
    if _store is None:
        raise HTTPException(status_code=503, detail="GitHub store not initialized")
    return _store


@router.get("/status")
async def github_status():
    """Check that the configured token can read the repository."""
    store = _require_store()
    if not store.enabled:
        return {"success": False, "message": "GitHub token/repository not configured"}
    connected = await store.test_connection()
    return {
        "success": connected,
        "message": "GitHub connection successful" if connected else "GitHub connection failed",
    }


@router.get("/repo")
async def github_repo():
    try:
        return await _require_store().repository_info()
    except StoreNotConfiguredError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    except RemoteStoreError as exc:
        raise HTTPException(status_code=502, detail=str(exc))


@router.get("/issues")
async def github_issues(state: str = Query(default="open", pattern="^(open|closed|all)$")):
    try:
        return await _require_store().list_issues(state)
    except StoreNotConfiguredError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    except RemoteStoreError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
