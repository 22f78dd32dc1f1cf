"""
Pydantic models for the rules engine endpoints
Characters, spell records, class policies, preparation toggles and commits
"""

from typing import Dict, Optional, List

from pydantic import BaseModel, Field

from character.models import (
    CastingTime, CharacterProfile, ClassInfo, ClassPolicy, EnforcementBehavior, RitualMode, RuleSet,
    SpellComponents, SpellMode, SpellRange, SpellRecord, SwapContext, SwapLedger, SwapMode,
)


# ----- characters -----

class ClassInfoModel(BaseModel):
    """A class the character has levels in"""
    identifier: str = Field(..., description="Class identifier (wizard, cleric, ...)")
    levels: int = Field(1, ge=0, le=20, description="Levels in this class")
    progression: str = Field('full', description="Spellcasting progression (full, half, third, pact, artificer, none)")
    base_max_prepared: int = Field(0, ge=0, description="Prepared spells allowed before policy bonuses")
    scale_values: Dict[str, int] = Field(default_factory=dict, description="Class scale values such as cantrips-known")

    def to_class_info(self) -> ClassInfo:
        return ClassInfo(
            identifier=self.identifier,
            levels=self.levels,
            progression=self.progression,
            base_max_prepared=self.base_max_prepared,
            scale_values=dict(self.scale_values),
        )


class CharacterRegistration(BaseModel):
    id: str = Field(..., min_length=1, description="Stable character identifier")
    name: str = ''
    classes: List[ClassInfoModel] = Field(default_factory=list)

    def to_profile(self) -> CharacterProfile:
        return CharacterProfile.from_classes(self.id, [c.to_class_info() for c in self.classes], name=self.name)


class CharacterSummary(BaseModel):
    id: str
    name: str
    total_level: int
    classes: List[str] = Field(default_factory=list, description="Spellcasting classes")
    rule_set: RuleSet
    enforcement_behavior: EnforcementBehavior


# ----- spell records -----

class CastingTimeModel(BaseModel):
    type: str = 'action'
    value: str = '1'


class SpellRangeModel(BaseModel):
    units: str = ''
    value: Optional[float] = None


class SpellComponentsModel(BaseModel):
    verbal: bool = False
    somatic: bool = False
    material: bool = False
    ritual: bool = False
    consumed: bool = False


class SpellRecordModel(BaseModel):
    """Spell record as exchanged with the host"""
    id: str
    name: str
    level: int = Field(0, ge=0, le=9, description="Spell level, 0 for cantrips")
    school: str = ''
    casting_time: CastingTimeModel = Field(default_factory=CastingTimeModel)
    range: SpellRangeModel = Field(default_factory=SpellRangeModel)
    damage_types: List[str] = Field(default_factory=list)
    conditions: List[str] = Field(default_factory=list)
    components: SpellComponentsModel = Field(default_factory=SpellComponentsModel)
    concentration: bool = False
    requires_save: bool = False
    prepared: bool = False
    source_class: Optional[str] = None
    mode: SpellMode = SpellMode.PREPARED

    def to_record(self) -> SpellRecord:
        return SpellRecord(
            id=self.id,
            name=self.name,
            level=self.level,
            school=self.school.lower(),
            casting_time=CastingTime(**self.casting_time.model_dump()),
            range=SpellRange(**self.range.model_dump()),
            damage_types=frozenset(d.lower() for d in self.damage_types),
            conditions=frozenset(c.lower() for c in self.conditions),
            components=SpellComponents(**self.components.model_dump()),
            concentration=self.concentration,
            requires_save=self.requires_save,
            prepared=self.prepared,
            source_class=self.source_class.lower() if self.source_class else None,
            mode=self.mode,
        )

    @classmethod
    def from_record(cls, record: SpellRecord) -> 'SpellRecordModel':
        return cls(
            id=record.id,
            name=record.name,
            level=record.level,
            school=record.school,
            casting_time=CastingTimeModel(type=record.casting_time.type, value=record.casting_time.value),
            range=SpellRangeModel(units=record.range.units, value=record.range.value),
            damage_types=sorted(record.damage_types),
            conditions=sorted(record.conditions),
            components=SpellComponentsModel(
                verbal=record.components.verbal,
                somatic=record.components.somatic,
                material=record.components.material,
                ritual=record.components.ritual,
                consumed=record.components.consumed,
            ),
            concentration=record.concentration,
            requires_save=record.requires_save,
            prepared=record.prepared,
            source_class=record.source_class,
            mode=record.mode,
        )


class SpellListResponse(BaseModel):
    character_id: str
    count: int
    spells: List[SpellRecordModel]


class SpellCreateRequest(BaseModel):
    spells: List[SpellRecordModel] = Field(..., min_length=1)


class BatchResponse(BaseModel):
    succeeded: List[str] = Field(default_factory=list)
    failed: Dict[str, str] = Field(default_factory=dict)


# ----- rules -----

class ClassPolicyModel(BaseModel):
    show_cantrips: bool = True
    cantrip_swapping: SwapMode = SwapMode.NONE
    spell_swapping: SwapMode = SwapMode.NONE
    ritual_casting: RitualMode = RitualMode.NONE
    preparation_bonus: int = 0
    cantrip_preparation_bonus: int = 0
    custom_spell_list: Optional[str] = None

    @classmethod
    def from_policy(cls, policy: ClassPolicy) -> 'ClassPolicyModel':
        return cls(**policy.to_dict())


class ClassPolicyPatch(BaseModel):
    """Partial class policy; omitted keys keep their value"""
    show_cantrips: Optional[bool] = None
    cantrip_swapping: Optional[str] = Field(None, description="none, levelUp or longRest")
    spell_swapping: Optional[str] = Field(None, description="none, levelUp or longRest")
    ritual_casting: Optional[str] = Field(None, description="none, prepared or always")
    preparation_bonus: Optional[int] = None
    cantrip_preparation_bonus: Optional[int] = None
    custom_spell_list: Optional[str] = None


class RuleStateResponse(BaseModel):
    character_id: str
    rule_set: RuleSet = Field(..., description="Effective rule set for this character")
    global_rule_set: RuleSet
    enforcement_behavior: EnforcementBehavior
    classes: Dict[str, ClassPolicyModel] = Field(default_factory=dict)


class ApplyRuleSetRequest(BaseModel):
    rule_set: RuleSet


class EnforcementRequest(BaseModel):
    behavior: Optional[EnforcementBehavior] = Field(None, description="None clears the character override")


# ----- preparation -----

class SwapLedgerModel(BaseModel):
    original_checked: List[str] = Field(default_factory=list)
    unlearned: Optional[str] = None
    learned: Optional[str] = None

    @classmethod
    def from_ledger(cls, ledger: Optional[SwapLedger]) -> Optional['SwapLedgerModel']:
        if ledger is None:
            return None
        return cls(**ledger.to_dict())


class DecisionModel(BaseModel):
    allowed: bool
    reason: Optional[str] = Field(None, description="Rule error tag when rejected")
    warning: Optional[str] = None


class ToggleRequest(BaseModel):
    spell_id: str
    checked: bool
    class_id: Optional[str] = None
    context: Optional[SwapContext] = Field(None, description="Defaults to the character's current context")


class ToggleResponse(BaseModel):
    spell_id: str
    checked: bool
    class_id: Optional[str] = None
    decision: DecisionModel
    draft: List[str] = Field(default_factory=list)
    ledger: Optional[SwapLedgerModel] = None


class CommitRequest(BaseModel):
    preparation: Optional[Dict[str, List[str]]] = Field(
        None, description="Full selection per class; the working drafts are committed when omitted")
    context: Optional[SwapContext] = Field(None, description="Swap window to complete after the commit")


class TierChanges(BaseModel):
    added: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)


class CommitResponse(BaseModel):
    success: bool
    cantrip_changes: Dict[str, TierChanges] = Field(default_factory=dict)
    spell_changes: Dict[str, TierChanges] = Field(default_factory=dict)
    created: List[str] = Field(default_factory=list)
    updated: List[str] = Field(default_factory=list)
    deleted: List[str] = Field(default_factory=list)
    failures: Dict[str, str] = Field(default_factory=dict, description="Repository failures keyed by spell id")
    completed_context: Optional[SwapContext] = None


class TierStats(BaseModel):
    current: int
    maximum: int


class ClassStats(BaseModel):
    spells: TierStats
    cantrips: TierStats


class PreparationStatsResponse(BaseModel):
    character_id: str
    classes: Dict[str, ClassStats] = Field(default_factory=dict)
    total: ClassStats


class ContextResponse(BaseModel):
    character_id: str
    context: SwapContext
    can_be_leveled_up: bool
    long_rest_pending: bool


class SwapCompleteRequest(BaseModel):
    context: SwapContext


class SwapCompleteResponse(BaseModel):
    context: SwapContext
    classes: List[str] = Field(default_factory=list, description="Classes whose ledger was closed")


class ChangeSummaryResponse(BaseModel):
    class_id: str
    context: SwapContext
    original: List[str] = Field(default_factory=list)
    removed: List[str] = Field(default_factory=list)
    added: List[str] = Field(default_factory=list)
    current: List[str] = Field(default_factory=list)
