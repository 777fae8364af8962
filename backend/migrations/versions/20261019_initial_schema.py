"""initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 09:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_initial'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MONEY = sa.Numeric(14, 2, asdecimal=False)


def _timestamps(updated: bool = True):
    cols = [sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now())]
    if updated:
        cols.append(sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()))
    return cols


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(), nullable=False, unique=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('settings', sa.JSON(), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_users_id', 'users', ['id'])

    op.create_table(
        'workspaces',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('workspace_type', sa.String(), nullable=False, server_default='personal'),
        sa.Column('owner_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_workspaces_id', 'workspaces', ['id'])

    op.create_table(
        'workspace_memberships',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('workspace_id', sa.Integer(), sa.ForeignKey('workspaces.id'), nullable=False),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('role', sa.String(), nullable=False, server_default='member'),
        *_timestamps(updated=False),
        sa.UniqueConstraint('workspace_id', 'user_id', name='uq_workspace_member'),
    )
    op.create_index('ix_workspace_memberships_workspace_id', 'workspace_memberships', ['workspace_id'])
    op.create_index('ix_workspace_memberships_user_id', 'workspace_memberships', ['user_id'])

    op.create_table(
        'accounts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('workspace_id', sa.Integer(), sa.ForeignKey('workspaces.id'), nullable=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('bank_name', sa.String(), nullable=False),
        sa.Column('account_number_last4', sa.String(), nullable=True),
        sa.Column('account_type', sa.String(), nullable=True),
        sa.Column('currency', sa.String(), nullable=False, server_default='INR'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )
    op.create_index('ix_accounts_id', 'accounts', ['id'])
    op.create_index('ix_accounts_user_id', 'accounts', ['user_id'])
    op.create_index('ix_accounts_workspace_id', 'accounts', ['workspace_id'])

    op.create_table(
        'bank_templates',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('bank_name', sa.String(), nullable=False),
        sa.Column('bank_code', sa.String(), nullable=False),
        sa.Column('account_type', sa.String(), nullable=False),
        sa.Column('file_format', sa.String(), nullable=False),
        sa.Column('parser_class', sa.String(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('logo_url', sa.String(), nullable=True),
        sa.Column('column_mappings', sa.JSON(), nullable=False),
        sa.Column('parser_config', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('display_order', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.UniqueConstraint('bank_code', 'account_type', 'file_format', name='uq_bank_template'),
    )
    op.create_index('ix_bank_templates_id', 'bank_templates', ['id'])
    op.create_index('ix_bank_templates_bank_code', 'bank_templates', ['bank_code'])

    op.create_table(
        'statements',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('workspace_id', sa.Integer(), sa.ForeignKey('workspaces.id'), nullable=True),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('accounts.id'), nullable=True),
        sa.Column('bank_template_id', sa.Integer(), sa.ForeignKey('bank_templates.id'), nullable=True),
        sa.Column('file_name', sa.String(), nullable=False),
        sa.Column('file_type', sa.String(), nullable=False),
        sa.Column('content', sa.LargeBinary(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('parsed_at', sa.DateTime(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_statements_id', 'statements', ['id'])
    op.create_index('ix_statements_user_id', 'statements', ['user_id'])
    op.create_index('ix_statements_workspace_id', 'statements', ['workspace_id'])
    op.create_index('ix_statements_status', 'statements', ['status'])

    op.create_table(
        'statement_analytics',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column(
            'statement_id', sa.Integer(), sa.ForeignKey('statements.id', ondelete='CASCADE'),
            nullable=False, unique=True,
        ),
        sa.Column('status', sa.String(), nullable=False, server_default='queued'),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('computed_at', sa.DateTime(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        'categories',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('slug', sa.String(), nullable=False, unique=True),
        sa.Column('parent_id', sa.Integer(), sa.ForeignKey('categories.id'), nullable=True),
        sa.Column('icon', sa.String(), nullable=True),
        sa.Column('color', sa.String(), nullable=True),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('is_system', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(updated=False),
        sa.UniqueConstraint('name', 'parent_id', name='uq_category_name_parent'),
    )
    op.create_index('ix_categories_id', 'categories', ['id'])
    op.create_index('ix_categories_slug', 'categories', ['slug'])

    op.create_table(
        'subcategories',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('category_id', sa.Integer(), sa.ForeignKey('categories.id'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('slug', sa.String(), nullable=False),
        sa.Column('keywords', sa.JSON(), nullable=False),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('display_order', sa.Integer(), nullable=False, server_default='0'),
        sa.UniqueConstraint('category_id', 'slug', name='uq_subcategory_slug'),
    )
    op.create_index('ix_subcategories_id', 'subcategories', ['id'])
    op.create_index('ix_subcategories_category_id', 'subcategories', ['category_id'])

    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('workspace_id', sa.Integer(), sa.ForeignKey('workspaces.id'), nullable=True),
        sa.Column(
            'statement_id', sa.Integer(), sa.ForeignKey('statements.id', ondelete='CASCADE'), nullable=True
        ),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('accounts.id'), nullable=True),
        sa.Column('transaction_date', sa.Date(), nullable=False),
        sa.Column('description', sa.String(), nullable=False),
        sa.Column('original_description', sa.String(), nullable=True),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('transaction_type', sa.String(), nullable=False),
        sa.Column('balance', MONEY, nullable=True),
        sa.Column('reference', sa.String(), nullable=True),
        sa.Column('category_id', sa.Integer(), sa.ForeignKey('categories.id'), nullable=True),
        sa.Column('subcategory_id', sa.Integer(), sa.ForeignKey('subcategories.id'), nullable=True),
        sa.Column('ai_category_id', sa.Integer(), sa.ForeignKey('categories.id'), nullable=True),
        sa.Column('confidence', sa.Float(), nullable=True),
        sa.Column('categorization_status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('tx_kind', sa.String(), nullable=True),
        sa.Column('counterparty_name', sa.String(), nullable=True),
        sa.Column('is_reviewed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('embedding', sa.JSON(), nullable=True),
        sa.Column('embedding_generated_at', sa.DateTime(), nullable=True),
        # FK to invoices is added once that table exists.
        sa.Column('invoice_id', sa.Integer(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_transactions_id', 'transactions', ['id'])
    op.create_index('ix_transactions_user_id', 'transactions', ['user_id'])
    op.create_index('ix_transactions_workspace_id', 'transactions', ['workspace_id'])
    op.create_index('ix_transactions_statement_id', 'transactions', ['statement_id'])
    op.create_index('ix_transactions_user_date', 'transactions', ['user_id', 'transaction_date'])
    op.create_index('ix_transactions_user_category', 'transactions', ['user_id', 'category_id'])

    op.create_table(
        'user_rules',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('workspace_id', sa.Integer(), sa.ForeignKey('workspaces.id'), nullable=True),
        sa.Column('category_id', sa.Integer(), sa.ForeignKey('categories.id'), nullable=False),
        sa.Column('subcategory_id', sa.Integer(), sa.ForeignKey('subcategories.id'), nullable=True),
        sa.Column('pattern', sa.String(), nullable=False),
        sa.Column('pattern_type', sa.String(), nullable=False, server_default='keyword'),
        sa.Column('match_field', sa.String(), nullable=False, server_default='description'),
        sa.Column('amount_min', MONEY, nullable=True),
        sa.Column('amount_max', MONEY, nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('match_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_matched_at', sa.DateTime(), nullable=True),
        sa.Column(
            'source_transaction_id', sa.Integer(),
            sa.ForeignKey('transactions.id', ondelete='SET NULL'), nullable=True,
        ),
        sa.Column('source', sa.String(), nullable=False, server_default='manual'),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'pattern', name='uq_user_rule_pattern'),
    )
    op.create_index('ix_user_rules_id', 'user_rules', ['id'])
    op.create_index('ix_user_rules_user_id', 'user_rules', ['user_id'])

    op.create_table(
        'labeled_examples',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('category_id', sa.Integer(), sa.ForeignKey('categories.id'), nullable=False),
        sa.Column('subcategory_id', sa.Integer(), sa.ForeignKey('subcategories.id'), nullable=True),
        sa.Column(
            'transaction_id', sa.Integer(), sa.ForeignKey('transactions.id', ondelete='SET NULL'), nullable=True
        ),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('normalized_description', sa.String(), nullable=True),
        sa.Column('tx_kind', sa.String(), nullable=True),
        sa.Column('source', sa.String(), nullable=False, server_default='user_feedback'),
        sa.Column('amount', MONEY, nullable=True),
        sa.Column('transaction_type', sa.String(), nullable=True),
        sa.Column('embedding', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('user_id', 'normalized_description', name='uq_labeled_example_user_desc'),
    )
    op.create_index('ix_labeled_examples_id', 'labeled_examples', ['id'])
    op.create_index('ix_labeled_examples_user_id', 'labeled_examples', ['user_id'])

    op.create_table(
        'global_patterns',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('pattern', sa.String(), nullable=False),
        sa.Column('pattern_type', sa.String(), nullable=False, server_default='keyword'),
        sa.Column('category_id', sa.Integer(), sa.ForeignKey('categories.id'), nullable=False),
        sa.Column('occurrence_count', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('user_count', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('agreement_count', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('is_verified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('verified_at', sa.DateTime(), nullable=True),
        sa.Column('match_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_matched_at', sa.DateTime(), nullable=True),
        sa.Column('source', sa.String(), nullable=False, server_default='llm_auto'),
        sa.Column('user_ids', sa.JSON(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('pattern', 'category_id', name='uq_global_pattern_category'),
    )
    op.create_index('ix_global_patterns_id', 'global_patterns', ['id'])
    op.create_index('ix_global_patterns_pattern', 'global_patterns', ['pattern'])

    op.create_table(
        'invoices',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('workspace_id', sa.Integer(), sa.ForeignKey('workspaces.id'), nullable=True),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('accounts.id'), nullable=True),
        sa.Column('source', sa.String(), nullable=False, server_default='upload'),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('file_name', sa.String(), nullable=True),
        sa.Column('gmail_message_id', sa.String(), nullable=True),
        sa.Column('vendor_name', sa.String(), nullable=True),
        sa.Column('vendor_gstin', sa.String(), nullable=True),
        sa.Column('invoice_number', sa.String(), nullable=True),
        sa.Column('invoice_date', sa.Date(), nullable=True),
        sa.Column('total_amount', MONEY, nullable=True),
        sa.Column('currency', sa.String(), nullable=True, server_default='INR'),
        sa.Column('extracted_data', sa.JSON(), nullable=False),
        sa.Column('extraction_method', sa.String(), nullable=True),
        sa.Column('extraction_confidence', sa.Float(), nullable=True),
        sa.Column(
            'matched_transaction_id', sa.Integer(),
            sa.ForeignKey('transactions.id', ondelete='SET NULL'), nullable=True,
        ),
        sa.Column('match_confidence', sa.Float(), nullable=True),
        sa.Column('matched_at', sa.DateTime(), nullable=True),
        sa.Column('matched_by', sa.String(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_invoices_id', 'invoices', ['id'])
    op.create_index('ix_invoices_user_id', 'invoices', ['user_id'])
    op.create_index('ix_invoices_status', 'invoices', ['status'])

    with op.batch_alter_table('transactions') as batch:
        batch.create_foreign_key('fk_transactions_invoice', 'invoices', ['invoice_id'], ['id'])

    op.create_table(
        'workflows',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('workspace_id', sa.Integer(), sa.ForeignKey('workspaces.id'), nullable=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='draft'),
        sa.Column('trigger_type', sa.String(), nullable=False),
        sa.Column('trigger_config', sa.JSON(), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('executions_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_executed_at', sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_workflows_id', 'workflows', ['id'])
    op.create_index('ix_workflows_user_id', 'workflows', ['user_id'])
    op.create_index('ix_workflows_trigger_type', 'workflows', ['trigger_type'])
    op.create_index('ix_workflows_workspace_status', 'workflows', ['workspace_id', 'status'])

    op.create_table(
        'workflow_steps',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column(
            'workflow_id', sa.Integer(), sa.ForeignKey('workflows.id', ondelete='CASCADE'), nullable=False
        ),
        sa.Column('step_type', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('config', sa.JSON(), nullable=False),
        sa.Column('conditions', sa.JSON(), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('continue_on_failure', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint('workflow_id', 'position', name='uq_workflow_step_position'),
    )
    op.create_index('ix_workflow_steps_id', 'workflow_steps', ['id'])
    op.create_index('ix_workflow_steps_workflow_id', 'workflow_steps', ['workflow_id'])
    op.create_index('ix_workflow_steps_step_type', 'workflow_steps', ['step_type'])

    op.create_table(
        'workflow_executions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column(
            'workflow_id', sa.Integer(), sa.ForeignKey('workflows.id', ondelete='CASCADE'), nullable=False
        ),
        sa.Column('workspace_id', sa.Integer(), sa.ForeignKey('workspaces.id'), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('trigger_source', sa.String(), nullable=True),
        sa.Column('context', sa.JSON(), nullable=False),
        sa.Column('trigger_data', sa.JSON(), nullable=False),
        sa.Column('current_step_position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('completed_steps_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_steps_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_workflow_executions_id', 'workflow_executions', ['id'])
    op.create_index('ix_workflow_executions_status', 'workflow_executions', ['status'])
    op.create_index('ix_workflow_executions_workflow_status', 'workflow_executions', ['workflow_id', 'status'])

    op.create_table(
        'workflow_step_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column(
            'workflow_execution_id', sa.Integer(),
            sa.ForeignKey('workflow_executions.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column(
            'workflow_step_id', sa.Integer(),
            sa.ForeignKey('workflow_steps.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('position', sa.Integer(), nullable=True),
        sa.Column('input_data', sa.JSON(), nullable=False),
        sa.Column('output_data', sa.JSON(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('error_backtrace', sa.Text(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
    )
    op.create_index('ix_workflow_step_logs_id', 'workflow_step_logs', ['id'])
    op.create_index('ix_workflow_step_logs_workflow_execution_id', 'workflow_step_logs', ['workflow_execution_id'])
    op.create_index('ix_workflow_step_logs_status', 'workflow_step_logs', ['status'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('workspace_id', sa.Integer(), sa.ForeignKey('workspaces.id'), nullable=True),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('notification_type', sa.String(), nullable=False, server_default='info'),
        sa.Column('data', sa.JSON(), nullable=False),
        sa.Column('read_at', sa.DateTime(), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index('ix_notifications_id', 'notifications', ['id'])
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])

    op.create_table(
        'background_jobs',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('job_type', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('progress', sa.Integer(), server_default='0'),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('result', sa.JSON(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        *_timestamps(updated=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_background_jobs_status'), 'background_jobs', ['status'], unique=False)
    op.create_index(op.f('ix_background_jobs_user_id'), 'background_jobs', ['user_id'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('background_jobs')
    op.drop_table('notifications')
    op.drop_table('workflow_step_logs')
    op.drop_table('workflow_executions')
    op.drop_table('workflow_steps')
    op.drop_table('workflows')
    with op.batch_alter_table('transactions') as batch:
        batch.drop_constraint('fk_transactions_invoice', type_='foreignkey')
    op.drop_table('invoices')
    op.drop_table('global_patterns')
    op.drop_table('labeled_examples')
    op.drop_table('user_rules')
    op.drop_table('transactions')
    op.drop_table('subcategories')
    op.drop_table('categories')
    op.drop_table('statement_analytics')
    op.drop_table('statements')
    op.drop_table('bank_templates')
    op.drop_table('accounts')
    op.drop_table('workspace_memberships')
    op.drop_table('workspaces')
    op.drop_table('users')
