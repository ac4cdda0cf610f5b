# quota_guard/demo/seed_demo_data.py

from datetime import datetime
from decimal import Decimal

from quota_guard.core.pricing import calculate_provider_cost, compute_billed_cost, get_model
from quota_guard.core.token_counter import TokenUsage
from quota_guard.storage.keys import ApiKeyRepository
from quota_guard.storage.models import Project, UsageRecord, User
from quota_guard.storage.projects import ProjectRepository, UserRepository
from quota_guard.storage.repository import UsageRepository, initialize_schema

MARKUP_PERCENT = Decimal("20")

initialize_schema()

UserRepository().upsert(User(id="demo-user", email="demo@example.com", name="Demo User"))
ProjectRepository().create_project(Project(
    id="demo-project",
    name="Demo Project",
    owner_id="demo-user",
    spending_limit=Decimal("1.00"),
))

key, raw_key = ApiKeyRepository().create_key(
    user_id="demo-user",
    name="demo key",
    project_id="demo-project",
    monthly_usage_limit=Decimal("5.00"),
)

model = get_model("gpt-4-turbo")
ledger = UsageRepository()
for prompt_tokens, completion_tokens in ((12000, 8000), (20000, 12000)):  # second call is a spike
    usage = TokenUsage(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)
    billed = compute_billed_cost(calculate_provider_cost(model, usage), MARKUP_PERCENT)
    ledger.append(UsageRecord(
        timestamp=datetime.now(),
        key_id=key.id,
        project_id="demo-project",
        billing_user_id="demo-user",
        provider=model.provider_id,
        model=model.model_identifier,
        tokens_input=prompt_tokens,
        tokens_output=completion_tokens,
        provider_cost=billed.provider_cost,
        markup_amount=billed.markup_amount,
        billed_cost=billed.billed_cost,
        metadata={"markupPercentApplied": str(MARKUP_PERCENT), "keyType": "project"},
    ))

print(f"Demo data inserted. API key: {raw_key}")
