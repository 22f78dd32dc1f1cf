"""
Rules router - rule sets, class policies and enforcement behavior
"""

from fastapi import APIRouter
from loguru import logger

from fastapi_routers.dependencies import CharacterIdDep, SpellbookDep
from fastapi_models import (
    ApplyRuleSetRequest, ClassPolicyModel, ClassPolicyPatch, EnforcementRequest, RuleStateResponse,
)

router = APIRouter()


def build_rule_state(spellbook, character_id: str) -> RuleStateResponse:
    rules = spellbook.get_manager('rules')
    return RuleStateResponse(
        character_id=character_id,
        rule_set=rules.get_effective_rule_set(character_id),
        global_rule_set=rules.get_global_rule_set(),
        enforcement_behavior=rules.get_enforcement_behavior(character_id),
        classes={
            class_id: ClassPolicyModel.from_policy(policy)
            for class_id, policy in sorted(rules.get_all_class_rules(character_id).items())
        },
    )


@router.get("/characters/{character_id}/rules", response_model=RuleStateResponse)
def get_rules(character_id: CharacterIdDep, spellbook: SpellbookDep):
    """Effective rule set, enforcement behavior and every class policy"""
    return build_rule_state(spellbook, character_id)


@router.patch("/characters/{character_id}/rules/classes/{class_id}", response_model=ClassPolicyModel)
async def update_class_rules(character_id: CharacterIdDep, class_id: str, patch: ClassPolicyPatch,
                             spellbook: SpellbookDep):
    """Merge a partial policy into one class; bonuses are clamped"""
    changes = {
        key: value for key, value in patch.model_dump(exclude_unset=True).items()
        if value is not None or key == 'custom_spell_list'
    }
    policy = await spellbook.get_manager('rules').update_class_rules(character_id, class_id, changes)
    return ClassPolicyModel.from_policy(policy)


@router.post("/characters/{character_id}/rules/apply", response_model=RuleStateResponse)
async def apply_rule_set(character_id: CharacterIdDep, request: ApplyRuleSetRequest, spellbook: SpellbookDep):
    """Replace every class policy with the rule set's defaults"""
    await spellbook.get_manager('rules').apply_rule_set(character_id, request.rule_set)
    logger.info(f"Rule set {request.rule_set.value} applied to {character_id} via API")
    return build_rule_state(spellbook, character_id)


@router.put("/characters/{character_id}/rules/enforcement", response_model=RuleStateResponse)
async def set_enforcement(character_id: CharacterIdDep, request: EnforcementRequest, spellbook: SpellbookDep):
    await spellbook.get_manager('rules').set_enforcement_behavior(character_id, request.behavior)
    return build_rule_state(spellbook, character_id)
