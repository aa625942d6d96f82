from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, conint, constr

from nftvest.core.vesting.permits import Permit

TokenId = conint(ge=0, strict=True)
Timestamp = conint(ge=0, strict=True)
Address = constr(strip_whitespace=True, min_length=1, max_length=64)


class _VestingInput(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class PermitInput(_VestingInput):
    token_id: TokenId = Field(alias="tokenId")
    deadline: Timestamp = 0
    signature: str = ""
    use_permit: bool = Field(default=False, alias="usePermit")
    signer_public_key: str = Field(default="", alias="signerPublicKey")

    def to_permit(self) -> Permit:
        return Permit(
            token_id=self.token_id,
            deadline=self.deadline,
            signature=self.signature,
            use_permit=self.use_permit,
            signer_public_key=self.signer_public_key,
        )


class TrancheInput(_VestingInput):
    timestamp: Timestamp
    count: conint(ge=0, strict=True)


class LinearPlanInput(_VestingInput):
    issuer: Address
    beneficiary: Address
    source_collection: Address = Field(alias="sourceCollection")
    template_id: conint(strict=True) = Field(alias="templateId")
    token_ids: list[TokenId] = Field(alias="tokenIds")
    permits: list[PermitInput] = Field(default_factory=list)


class TranchePlanInput(_VestingInput):
    issuer: Address
    beneficiary: Address
    source_collection: Address = Field(alias="sourceCollection")
    token_ids: list[TokenId] = Field(alias="tokenIds")
    tranche_schedule: list[TrancheInput] = Field(alias="trancheSchedule")
    permits: list[PermitInput] = Field(default_factory=list)


class ClaimInput(_VestingInput):
    caller: Address
    to: Address | None = None
    token_ids: list[TokenId] | None = Field(default=None, alias="tokenIds")


class RevokeInput(_VestingInput):
    caller: Address
