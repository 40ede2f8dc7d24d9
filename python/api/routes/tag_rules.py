"""
Tag Rules API Routes

CRUD for a profile's saved tag rules, outside of any import session.
"""

from fastapi import APIRouter, Depends, HTTPException

from ..database import Stores, get_stores
from .imports import TagRuleInput, TagRulesInput

router = APIRouter(prefix="/profiles/{profile_id}/tag-rules", tags=["tag-rules"])


@router.get("")
async def list_tag_rules(
    profile_id: int,
    stores: Stores = Depends(get_stores),
) -> list[dict]:
    """List the profile's rules in creation order."""
    return [r.to_dict() for r in await stores.rules.list_rules(profile_id)]


@router.post("", status_code=201)
async def create_tag_rule(
    profile_id: int,
    input_data: TagRuleInput,
    stores: Stores = Depends(get_stores),
) -> dict:
    rule = input_data.to_rule()
    rule_id = await stores.rules.create_rule(profile_id, rule)
    return {"id": rule_id, "profile_id": profile_id, **rule.to_dict()}


@router.put("")
async def replace_tag_rules(
    profile_id: int,
    input_data: TagRulesInput,
    stores: Stores = Depends(get_stores),
) -> list[dict]:
    """Replace every rule of the profile."""
    await stores.rules.replace_all(profile_id, [r.to_rule() for r in input_data.rules])
    return [r.to_dict() for r in await stores.rules.list_rules(profile_id)]


@router.put("/{rule_id}")
async def update_tag_rule(
    profile_id: int,
    rule_id: int,
    input_data: TagRuleInput,
    stores: Stores = Depends(get_stores),
) -> dict:
    rule = input_data.to_rule()
    if not await stores.rules.update_rule(rule_id, rule):
        raise HTTPException(status_code=404, detail="Tag rule not found")
    return {"id": rule_id, "profile_id": profile_id, **rule.to_dict()}


@router.delete("/{rule_id}", status_code=204)
async def delete_tag_rule(
    profile_id: int,
    rule_id: int,
    stores: Stores = Depends(get_stores),
) -> None:
    if not await stores.rules.delete_rule(rule_id):
        raise HTTPException(status_code=404, detail="Tag rule not found")
