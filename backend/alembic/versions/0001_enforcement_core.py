"""Enforcement core schema

Revision ID: 0001_enforcement_core
Revises:
Create Date: 2026-10-17 09:00:00.000000

Employees directory mirror, violations, policies with conditions and
actions, policy executions (four-value status constraint, one execution per
policy and violation), handler side-effect tables and the audit log.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '0001_enforcement_core'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'employees',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('department', sa.String(100), nullable=True),
        sa.Column('role', sa.String(100), nullable=True),
        sa.Column('phone', sa.String(40), nullable=True),
        sa.Column('manager_email', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('baseline', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_employees_email', 'employees', ['email'], unique=True)
    op.create_index('ix_employees_department', 'employees', ['department'])

    op.create_table(
        'policies',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.String(2000), nullable=True),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='50'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('policy_level', sa.String(10), nullable=False, server_default='global'),
        sa.Column('target_type', sa.String(20), nullable=True),
        sa.Column('target_id', sa.String(255), nullable=True),
        sa.Column('created_by', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_policies_priority', 'policies', ['priority'])
    op.create_index('ix_policies_is_active', 'policies', ['is_active'])

    op.create_table(
        'policy_conditions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('policy_id', sa.Integer(), sa.ForeignKey('policies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('condition_type', sa.String(40), nullable=False),
        sa.Column('operator', sa.String(20), nullable=False),
        sa.Column('value', postgresql.JSONB(), nullable=True),
        sa.Column('logical_operator', sa.String(3), nullable=False, server_default='AND'),
        sa.Column('condition_order', sa.Integer(), nullable=False, server_default='0'),
    )
    op.create_index('ix_policy_conditions_policy_id', 'policy_conditions', ['policy_id'])

    op.create_table(
        'policy_actions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('policy_id', sa.Integer(), sa.ForeignKey('policies.id', ondelete='CASCADE'), nullable=False),
        sa.Column('action_type', sa.String(40), nullable=False),
        sa.Column('action_config', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('execution_order', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('delay_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint('delay_minutes >= 0', name='ck_policy_actions_delay_non_negative'),
    )
    op.create_index('ix_policy_actions_policy_id', 'policy_actions', ['policy_id'])

    op.create_table(
        'violations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id'), nullable=False),
        sa.Column('source_message_id', sa.String(255), nullable=False),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('severity', sa.String(10), nullable=False),
        sa.Column('description', sa.String(2000), nullable=False),
        sa.Column('source', sa.String(50), nullable=False, server_default='risk_classifier'),
        sa.Column('metadata', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('status', sa.String(20), nullable=False, server_default='Active'),
        sa.Column('resolution_notes', sa.String(2000), nullable=True),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("severity IN ('Low', 'Medium', 'High', 'Critical')", name='ck_violations_severity'),
    )
    op.create_index('ix_violations_source_message_id', 'violations', ['source_message_id'], unique=True)
    op.create_index('ix_violations_employee_id', 'violations', ['employee_id'])
    op.create_index('ix_violations_type', 'violations', ['type'])
    op.create_index('ix_violations_severity', 'violations', ['severity'])
    op.create_index('ix_violations_status', 'violations', ['status'])
    op.create_index('ix_violations_created_at', 'violations', ['created_at'])

    op.create_table(
        'policy_executions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('policy_id', sa.Integer(), sa.ForeignKey('policies.id'), nullable=False),
        sa.Column('violation_id', sa.Integer(), sa.ForeignKey('violations.id'), nullable=False),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id'), nullable=False),
        sa.Column('execution_status', sa.String(10), nullable=False, server_default='pending'),
        sa.Column('execution_result', postgresql.JSONB(), nullable=True),
        sa.Column('error_message', sa.String(2000), nullable=True),
        sa.Column('claimed_by', sa.String(100), nullable=True),
        sa.Column('claimed_at', sa.DateTime(), nullable=True),
        sa.Column('not_before', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('policy_id', 'violation_id', name='uq_policy_executions_policy_violation'),
        sa.CheckConstraint(
            "execution_status IN ('pending', 'success', 'failed', 'skipped')",
            name='ck_policy_executions_status',
        ),
    )
    op.create_index('ix_policy_executions_policy_id', 'policy_executions', ['policy_id'])
    op.create_index('ix_policy_executions_violation_id', 'policy_executions', ['violation_id'])
    op.create_index('ix_policy_executions_employee_id', 'policy_executions', ['employee_id'])
    op.create_index('ix_policy_executions_execution_status', 'policy_executions', ['execution_status'])
    op.create_index('ix_policy_executions_created_at', 'policy_executions', ['created_at'])
    op.create_index('ix_policy_executions_not_before', 'policy_executions', ['not_before'])

    op.create_table(
        'incidents',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('incident_id', sa.String(30), nullable=False),
        sa.Column('violation_id', sa.Integer(), sa.ForeignKey('violations.id'), nullable=False),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id'), nullable=False),
        sa.Column('policy_id', sa.Integer(), sa.ForeignKey('policies.id'), nullable=True),
        sa.Column('escalation_level', sa.String(20), nullable=False, server_default='manager'),
        sa.Column('priority', sa.String(10), nullable=False, server_default='high'),
        sa.Column('status', sa.String(20), nullable=False, server_default='open'),
        sa.Column('summary', sa.String(2000), nullable=False),
        sa.Column('details', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_incidents_incident_id', 'incidents', ['incident_id'], unique=True)
    op.create_index('ix_incidents_violation_id', 'incidents', ['violation_id'])
    op.create_index('ix_incidents_employee_id', 'incidents', ['employee_id'])
    op.create_index('ix_incidents_status', 'incidents', ['status'])

    op.create_table(
        'employee_monitoring_flags',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id'), nullable=False),
        sa.Column('monitoring_level', sa.String(20), nullable=False, server_default='enhanced'),
        sa.Column('weight', sa.Float(), nullable=False, server_default='1.25'),
        sa.Column('reason', sa.String(500), nullable=True),
        sa.Column('source_violation_id', sa.Integer(), sa.ForeignKey('violations.id'), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_employee_monitoring_flags_employee_id', 'employee_monitoring_flags', ['employee_id'], unique=True)
    op.create_index('ix_employee_monitoring_flags_expires_at', 'employee_monitoring_flags', ['expires_at'])

    op.create_table(
        'access_restrictions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id'), nullable=False),
        sa.Column('violation_id', sa.Integer(), sa.ForeignKey('violations.id'), nullable=True),
        sa.Column('access_type', sa.String(30), nullable=False, server_default='all'),
        sa.Column('reason', sa.String(500), nullable=False),
        sa.Column('external_reference', sa.String(100), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_access_restrictions_employee_id', 'access_restrictions', ['employee_id'])

    op.create_table(
        'system_notifications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('title', sa.String(300), nullable=False),
        sa.Column('message', sa.String(4000), nullable=False),
        sa.Column('priority', sa.String(10), nullable=False, server_default='high'),
        sa.Column('category', sa.String(30), nullable=False, server_default='policy_alert'),
        sa.Column('violation_id', sa.Integer(), sa.ForeignKey('violations.id'), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'audit_log',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('event_id', sa.String(36), nullable=False),
        sa.Column('event_type', sa.String(40), nullable=False),
        sa.Column('actor', sa.String(100), nullable=False),
        sa.Column('action', sa.String(500), nullable=False),
        sa.Column('resource_type', sa.String(30), nullable=True),
        sa.Column('resource_id', sa.String(50), nullable=True),
        sa.Column('details', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('previous_hash', sa.String(64), nullable=True),
        sa.Column('current_hash', sa.String(64), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_audit_log_event_id', 'audit_log', ['event_id'], unique=True)
    op.create_index('ix_audit_log_event_type', 'audit_log', ['event_type'])
    op.create_index('ix_audit_log_resource', 'audit_log', ['resource_type', 'resource_id'])
    op.create_index('ix_audit_log_created_at', 'audit_log', ['created_at'])


def downgrade() -> None:
    for table in (
        'audit_log',
        'system_notifications',
        'access_restrictions',
        'employee_monitoring_flags',
        'incidents',
        'policy_executions',
        'violations',
        'policy_actions',
        'policy_conditions',
        'policies',
        'employees',
    ):
        op.drop_table(table)
