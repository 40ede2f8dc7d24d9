"""
Statement Import API Routes

Drives an import session through upload, mapping, review and commit.

Sessions live in process memory until the client closes them with
DELETE /imports/{id}. Committing does not close a session, so its result
stays readable and it can be reset for another statement; clients must
delete sessions they are done with.
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from statement_import.session import ImportSession
from statement_import.tag_rules import TagRule

from ..database import Stores, get_stores
from ..sessions import SessionRegistry, get_registry, get_session

router = APIRouter(prefix="/imports", tags=["imports"])


class SessionCreateInput(BaseModel):
    """Input model for opening an import session."""

    profile_id: int
    inverse_types: bool | None = None


class UploadInput(BaseModel):
    """Raw CSV text to import."""

    text: str
    detect_mapping: bool = True
    guidance: str | None = None


class GuidanceInput(BaseModel):
    guidance: str | None = None


class MappingInput(BaseModel):
    """Column name to canonical field name."""

    mapping: dict[str, str]


class ApplyMappingInput(BaseModel):
    classify: bool = True
    guidance: str | None = None


class PromptInput(BaseModel):
    prompt: str


class PromptResponseInput(BaseModel):
    """Assistant reply to a hand-edited prompt."""

    response_text: str


class RowUpdateInput(BaseModel):
    """Editable review row fields; only fields that are set are changed."""

    type: str | None = None
    amount: str | None = None
    description: str | None = None
    transaction_date: str | None = None
    reference: str | None = None
    suggested_tags: list[str] | None = None
    excluded: bool | None = None


class TagRuleInput(BaseModel):
    """Tag rule model."""

    match_text: str = ""
    tag: str = ""
    match_mode: str = "substring"
    replacement_description: str = ""

    def to_rule(self) -> TagRule:
        return TagRule.from_dict(self.model_dump())


class TagRulesInput(BaseModel):
    rules: list[TagRuleInput]


class ApplyTagRulesInput(BaseModel):
    rules: list[TagRuleInput] | None = None


class InverseTypesInput(BaseModel):
    enabled: bool


def _state(session_id: str, session: ImportSession) -> dict[str, Any]:
    return {"id": session_id, **session.to_dict()}


@router.post("", status_code=201)
async def create_session(
    input_data: SessionCreateInput,
    request: Request,
    stores: Stores = Depends(get_stores),
    registry: SessionRegistry = Depends(get_registry),
) -> dict[str, Any]:
    """Open an import session with the profile's saved tag rules loaded."""
    session = ImportSession(
        profile_id=input_data.profile_id,
        transaction_store=stores.transactions,
        tag_store=stores.tags,
        rule_store=stores.rules,
        assistant=request.app.state.assistant,
        settings=request.app.state.settings,
    )
    if input_data.inverse_types is not None:
        session.inverse_types = input_data.inverse_types

    await session.load_tag_rules()
    session_id = registry.add(session)
    return _state(session_id, session)


@router.get("/{session_id}")
async def get_session_state(
    session_id: str,
    session: ImportSession = Depends(get_session),
) -> dict[str, Any]:
    return _state(session_id, session)


@router.delete("/{session_id}", status_code=204)
async def close_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> None:
    if not registry.remove(session_id):
        raise HTTPException(status_code=404, detail="Import session not found")


@router.post("/{session_id}/reset")
async def reset_session(
    session_id: str,
    session: ImportSession = Depends(get_session),
) -> dict[str, Any]:
    session.reset()
    return _state(session_id, session)


# ─── Upload & mapping ───────────────────────────────────────────────


@router.post("/{session_id}/upload")
async def upload(
    session_id: str,
    input_data: UploadInput,
    session: ImportSession = Depends(get_session),
) -> dict[str, Any]:
    """Parse CSV text and propose a column mapping."""
    await session.load(input_data.text, input_data.detect_mapping, input_data.guidance)
    return _state(session_id, session)


@router.post("/{session_id}/mapping/detect")
async def detect_mapping(
    session_id: str,
    input_data: GuidanceInput,
    session: ImportSession = Depends(get_session),
) -> dict[str, Any]:
    await session.detect_mapping(input_data.guidance)
    return _state(session_id, session)


@router.put("/{session_id}/mapping")
async def set_mapping(
    session_id: str,
    input_data: MappingInput,
    session: ImportSession = Depends(get_session),
) -> dict[str, Any]:
    session.set_mapping(input_data.mapping)
    return _state(session_id, session)


@router.post("/{session_id}/mapping/response")
async def apply_mapping_response(
    session_id: str,
    input_data: PromptResponseInput,
    session: ImportSession = Depends(get_session),
) -> dict[str, Any]:
    session.apply_mapping_response(input_data.response_text)
    return _state(session_id, session)


@router.post("/{session_id}/prompt")
async def run_prompt(
    input_data: PromptInput,
    session: ImportSession = Depends(get_session),
) -> dict[str, str]:
    """Send a hand-edited prompt to the assistant and return its raw reply."""
    return {"response": await session.run_prompt(input_data.prompt)}


@router.put("/{session_id}/inverse-types")
async def set_inverse_types(
    session_id: str,
    input_data: InverseTypesInput,
    session: ImportSession = Depends(get_session),
) -> dict[str, Any]:
    session.inverse_types = input_data.enabled
    return _state(session_id, session)


@router.post("/{session_id}/apply-mapping")
async def apply_mapping(
    session_id: str,
    input_data: ApplyMappingInput,
    session: ImportSession = Depends(get_session),
) -> dict[str, Any]:
    """Build review rows, classify them and flag duplicates."""
    await session.apply_mapping(input_data.classify, input_data.guidance)
    return _state(session_id, session)


@router.post("/{session_id}/back-to-mapping")
async def back_to_mapping(
    session_id: str,
    session: ImportSession = Depends(get_session),
) -> dict[str, Any]:
    session.back_to_mapping()
    return _state(session_id, session)


# ─── Review ─────────────────────────────────────────────────────────


@router.patch("/{session_id}/rows/{index}")
async def update_row(
    index: int,
    input_data: RowUpdateInput,
    session: ImportSession = Depends(get_session),
) -> dict[str, Any]:
    row = session.update_row(index, **input_data.model_dump(exclude_unset=True, exclude_none=True))
    return row.to_dict()


@router.post("/{session_id}/rows/toggle-exclude-all")
async def toggle_exclude_all(
    session_id: str,
    session: ImportSession = Depends(get_session),
) -> dict[str, Any]:
    session.toggle_exclude_all()
    return _state(session_id, session)


@router.post("/{session_id}/rows/toggle-exclude-duplicates")
async def toggle_exclude_duplicates(
    session_id: str,
    session: ImportSession = Depends(get_session),
) -> dict[str, Any]:
    session.toggle_exclude_duplicates()
    return _state(session_id, session)


@router.post("/{session_id}/rows/{index}/toggle-exclude")
async def toggle_exclude(
    index: int,
    session: ImportSession = Depends(get_session),
) -> dict[str, Any]:
    return session.toggle_exclude(index).to_dict()


@router.post("/{session_id}/rows/{index}/reclassify")
async def reclassify_row(
    index: int,
    input_data: GuidanceInput,
    session: ImportSession = Depends(get_session),
) -> dict[str, Any]:
    row = await session.reclassify_row(index, input_data.guidance)
    if row is None:
        raise HTTPException(status_code=409, detail="Import session changed during reclassification")
    return row.to_dict()


@router.post("/{session_id}/classifications/response")
async def apply_classification_response(
    session_id: str,
    input_data: PromptResponseInput,
    session: ImportSession = Depends(get_session),
) -> dict[str, Any]:
    updated = session.apply_classification_response(input_data.response_text)
    return {"updated": updated, **_state(session_id, session)}


# ─── Tag rules ──────────────────────────────────────────────────────


@router.put("/{session_id}/tag-rules")
async def set_tag_rules(
    session_id: str,
    input_data: TagRulesInput,
    session: ImportSession = Depends(get_session),
) -> dict[str, Any]:
    """Replace the session's working rule list without applying it."""
    session.set_tag_rules([r.to_rule() for r in input_data.rules])
    return _state(session_id, session)


@router.post("/{session_id}/tag-rules/preview")
async def preview_tag_rule(
    input_data: TagRuleInput,
    session: ImportSession = Depends(get_session),
) -> dict[str, int]:
    """Count the rows a rule would match, without changing anything."""
    rule = input_data.to_rule()
    return {
        "match_count": session.match_count(rule),
        "affected_count": session.affected_count(),
    }


@router.post("/{session_id}/tag-rules/apply")
async def apply_tag_rules(
    session_id: str,
    input_data: ApplyTagRulesInput,
    session: ImportSession = Depends(get_session),
) -> dict[str, Any]:
    rules = [r.to_rule() for r in input_data.rules] if input_data.rules is not None else None
    result = await session.apply_tag_rules(rules)
    if result is None:
        raise HTTPException(status_code=409, detail="Import session changed while applying rules")
    return {
        "rules_used": result.rules_used,
        "checked": result.checked,
        "matched": result.matched,
        **_state(session_id, session),
    }


# ─── Commit ─────────────────────────────────────────────────────────


@router.post("/{session_id}/commit")
async def commit(
    session_id: str,
    session: ImportSession = Depends(get_session),
) -> dict[str, Any]:
    """Persist the included rows."""
    result = await session.commit()
    return {"result": result.to_dict(), **_state(session_id, session)}
