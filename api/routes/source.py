"""Rule repository access check."""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from api.config import settings
from api.services.errors import SourceError
from api.services.github_source import rule_source

router = APIRouter(prefix="/source", tags=["source"])


class RepositoryInfo(BaseModel):
    name: str
    is_public: bool
    last_updated: str | None = None
    default_branch: str | None = None


class SourceAccess(BaseModel):
    authenticated: bool
    can_read_rules: bool
    rule_files_found: int


class SourceCheck(BaseModel):
    success: bool
    repository: RepositoryInfo
    access: SourceAccess
    message: str


@router.get("", response_model=SourceCheck)
async def check_source():
    """Check that the rule repository is reachable and count top-level rule files."""
    try:
        repo = await rule_source.get_repository()
        listing = await rule_source.list_directory(settings.rules_path)
    except SourceError as e:
        suggestion = (
            "Repository may require authentication or SAML SSO authorization"
            if "403" in str(e) or "rate limit" in str(e)
            else "Check network connectivity and repository name"
        )
        raise HTTPException(
            status_code=502,
            detail={
                "success": False,
                "error": str(e),
                "authenticated": rule_source.authenticated,
                "suggestion": suggestion,
            },
        )

    rule_files = [
        item for item in listing
        if item.get("type") == "file" and item.get("name", "").endswith(settings.rule_file_extension)
    ]
    return SourceCheck(
        success=True,
        repository=RepositoryInfo(
            name=repo.get("full_name", f"{rule_source.owner}/{rule_source.repo}"),
            is_public=not repo.get("private", False),
            last_updated=repo.get("updated_at"),
            default_branch=repo.get("default_branch"),
        ),
        access=SourceAccess(
            authenticated=rule_source.authenticated,
            can_read_rules=True,
            rule_files_found=len(rule_files),
        ),
        message="GitHub access is working",
    )
