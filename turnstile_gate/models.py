from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr


# Token to verify, as sent to the siteverify endpoint
class VerificationRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    secret: SecretStr
    remote_ip: str | None = None
    idempotency_key: str | None = None

    def to_form(self) -> dict[str, str]:
        """Return the form-encoded siteverify payload."""
        payload = {
            "secret": self.secret.get_secret_value(),
            "response": self.token,
        }
        if self.remote_ip:
            payload["remoteip"] = self.remote_ip
        if self.idempotency_key:
            payload["idempotency_key"] = self.idempotency_key
        return payload


# Verdict from the siteverify endpoint
class VerificationResult(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    success: bool
    error_codes: list[str] = Field(default_factory=list, alias="error-codes")
    challenge_ts: str | None = None
    hostname: str | None = None
    action: str | None = None
    cdata: str | None = None

    @classmethod
    def failure(cls, *error_codes: str) -> "VerificationResult":
        return cls(success=False, error_codes=list(error_codes))


# JSON body returned to clients on rejection
class RejectionBody(BaseModel):
    error: Literal["captcha_verification_failed"] = "captcha_verification_failed"
    message: str
    error_codes: list[str] = []
