"""Seed the default enforcement policies and a small demo employee directory.

Existing policies (matched by name) are left as they are.

Run with: python -m securewatch.seed.policies
"""

import asyncio

from sqlalchemy import select

from securewatch.database import async_session, engine
from securewatch.models import Employee, Policy
from securewatch.schemas.schemas import PolicyCreate
from securewatch.services.policy_engine import build_policy

SECURITY_TEAM = "security@company.com"

DEFAULT_POLICIES = [
    {
        "name": "Critical Risk Auto-Response",
        "description": "Automatic response for critical risk violations",
        "priority": 100,
        "conditions": [
            {"condition_type": "violation_severity", "operator": "equals", "value": "Critical"},
            {"condition_type": "risk_score", "operator": "greater_than", "value": 85, "logical_operator": "AND"},
        ],
        "actions": [
            {"action_type": "email_alert", "action_config": {
                "recipients": [SECURITY_TEAM], "subject": "Critical Security Violation Detected"}},
            {"action_type": "escalate_incident", "action_config": {
                "escalation_level": "security_team", "priority": "critical",
                "notify_management": True, "management_recipients": ["ciso@company.com"]}},
            {"action_type": "increase_monitoring", "action_config": {
                "monitoring_level": "strict", "duration_hours": 24}},
        ],
    },
    {
        "name": "Data Breach Protocol",
        "description": "Standard response for data breach incidents",
        "priority": 90,
        "conditions": [
            {"condition_type": "violation_type", "operator": "in",
             "value": ["data_exfiltration", "gdpr", "hipaa"]},
            {"condition_type": "external_recipients", "operator": "equals", "value": True,
             "logical_operator": "AND"},
        ],
        "actions": [
            {"action_type": "immediate_alert", "action_config": {
                "alert_channels": ["email", "system"], "recipients": [SECURITY_TEAM], "priority": "critical"}},
            {"action_type": "log_detailed_activity", "action_config": {"log_level": "forensic"}},
            {"action_type": "escalate_incident", "action_config": {"escalation_level": "legal", "priority": "high"}},
        ],
    },
    {
        "name": "PCI Card Data Exposure",
        "description": "Card numbers sent outside the organization",
        "priority": 80,
        "conditions": [
            {"condition_type": "regulation", "operator": "equals", "value": "PCI_DSS"},
        ],
        "actions": [
            {"action_type": "email_alert", "action_config": {
                "recipients": [SECURITY_TEAM, "compliance@company.com"], "subject": "PCI DSS exposure"}},
            {"action_type": "increase_monitoring", "action_config": {"monitoring_level": "enhanced"}},
        ],
    },
    {
        "name": "After Hours Access Alert",
        "description": "Monitor and alert on after-hours activity",
        "priority": 50,
        "conditions": [
            {"condition_type": "time_based", "operator": "equals", "value": True},
            {"condition_type": "risk_score", "operator": "greater_equal", "value": 70, "logical_operator": "AND"},
        ],
        "actions": [
            {"action_type": "log_detailed_activity", "action_config": {"log_level": "detailed"}},
            # Give the employee a chance to explain before the team is paged
            {"action_type": "email_alert", "delay_minutes": 30, "action_config": {
                "recipients": [SECURITY_TEAM], "subject": "After-hours violation"}},
        ],
    },
]

DEMO_EMPLOYEES = [
    {"name": "Dana Whitfield", "email": "dana.whitfield@company.com", "department": "Finance", "role": "Controller",
     "manager_email": "cfo@company.com"},
    {"name": "Ravi Menon", "email": "ravi.menon@company.com", "department": "Engineering", "role": "Engineer",
     "manager_email": "cto@company.com"},
    {"name": "Lena Ortiz", "email": "lena.ortiz@company.com", "department": "Customer Support", "role": "Agent",
     "manager_email": "support.lead@company.com", "phone": "+15550100"},
]


async def seed_policies(session) -> int:
    existing = set((await session.execute(select(Policy.name))).scalars())
    created = 0
    for definition in DEFAULT_POLICIES:
        if definition["name"] in existing:
            continue
        session.add(build_policy(PolicyCreate.model_validate(definition), created_by="seed"))
        created += 1
    return created


async def seed_employees(session) -> int:
    existing = set((await session.execute(select(Employee.email))).scalars())
    rows = [Employee(**e) for e in DEMO_EMPLOYEES if e["email"] not in existing]
    session.add_all(rows)
    return len(rows)


async def run_seed():
    async with async_session() as session:
        policies = await seed_policies(session)
        employees = await seed_employees(session)
        await session.commit()
    await engine.dispose()
    print(f"Seeded {policies} policies and {employees} employees")


if __name__ == "__main__":
    asyncio.run(run_seed())
