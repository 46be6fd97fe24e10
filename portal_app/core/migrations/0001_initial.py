from __future__ import annotations

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Role",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=128, unique=True)),
                (
                    "is_default",
                    models.BooleanField(
                        default=False,
                        help_text="Role assigned to members created by CRM reconciliation.",
                    ),
                ),
            ],
            options={
                "ordering": ("name", "id"),
            },
        ),
        migrations.CreateModel(
            name="TeamMember",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("email", models.EmailField(max_length=254, unique=True)),
                ("first_name", models.CharField(blank=True, default="", max_length=255)),
                ("last_name", models.CharField(blank=True, default="", max_length=255)),
                ("is_active", models.BooleanField(default=True)),
                (
                    "role",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="core.role",
                    ),
                ),
            ],
            options={
                "ordering": ("email",),
            },
        ),
        migrations.CreateModel(
            name="Organization",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255)),
                ("external_account_id", models.CharField(blank=True, max_length=64, null=True, unique=True)),
                ("email_domains", models.JSONField(blank=True, default=list)),
                ("program_ticket_balances", models.JSONField(blank=True, default=dict)),
                ("training_fund_balance", models.DecimalField(decimal_places=2, default=0, max_digits=12)),
                ("purchase_order_enabled", models.BooleanField(default=False)),
                ("last_synced", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ("name", "id"),
            },
        ),
        migrations.CreateModel(
            name="Member",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("email", models.EmailField(max_length=254, unique=True)),
                ("first_name", models.CharField(blank=True, default="", max_length=255)),
                ("last_name", models.CharField(blank=True, default="", max_length=255)),
                ("organization_code", models.CharField(blank=True, default="", max_length=64)),
                ("external_contact_id", models.CharField(blank=True, max_length=64, null=True, unique=True)),
                ("member_excluded_features", models.JSONField(blank=True, default=list)),
                ("has_seen_onboarding_tour", models.BooleanField(default=False)),
                ("last_synced", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "organization",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="members",
                        to="core.organization",
                    ),
                ),
                (
                    "role",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="core.role",
                    ),
                ),
            ],
            options={
                "ordering": ("email",),
                "indexes": [models.Index(fields=["organization_code"], name="member_org_code")],
            },
        ),
        migrations.CreateModel(
            name="ProgramTicketTransaction",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("program_name", models.CharField(db_index=True, max_length=128)),
                (
                    "transaction_type",
                    models.CharField(
                        choices=[("purchase", "Purchase"), ("usage", "Usage"), ("refund", "Refund")],
                        max_length=16,
                    ),
                ),
                ("quantity", models.PositiveIntegerField()),
                ("booking_reference", models.CharField(blank=True, db_index=True, default="", max_length=64)),
                ("payment_reference", models.CharField(blank=True, default="", max_length=255)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("cancellation_reason", models.TextField(blank=True, null=True)),
                ("cancelled_by", models.CharField(blank=True, default="", max_length=255)),
                ("notes", models.TextField(blank=True, default="")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "organization",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="program_ticket_transactions",
                        to="core.organization",
                    ),
                ),
                (
                    "refunded_transaction",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="refunds",
                        to="core.programtickettransaction",
                    ),
                ),
            ],
            options={
                "ordering": ("created_at", "id"),
                "indexes": [models.Index(fields=["organization", "program_name"], name="ptt_org_program")],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(quantity__gt=0), name="ptt_quantity_positive"),
                    models.CheckConstraint(
                        condition=models.Q(cancelled_at__isnull=True) | models.Q(transaction_type="usage"),
                        name="ptt_only_usage_cancellable",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Event",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("title", models.CharField(max_length=255)),
                ("program_tag", models.CharField(blank=True, default="", max_length=128)),
                ("starts_at", models.DateTimeField(blank=True, null=True)),
                ("ticket_price", models.DecimalField(decimal_places=2, default=0, max_digits=10)),
            ],
            options={
                "ordering": ("starts_at", "id"),
            },
        ),
        migrations.CreateModel(
            name="Booking",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("attendee_email", models.EmailField(blank=True, default="", max_length=254)),
                ("attendee_first_name", models.CharField(blank=True, default="", max_length=255)),
                ("attendee_last_name", models.CharField(blank=True, default="", max_length=255)),
                ("booking_reference", models.CharField(db_index=True, max_length=64)),
                ("confirmation_token", models.CharField(blank=True, max_length=128, null=True, unique=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("pending_backstage_sync", "Pending backstage sync"),
                            ("confirmed", "Confirmed"),
                            ("cancelled", "Cancelled"),
                        ],
                        db_index=True,
                        default="pending",
                        max_length=32,
                    ),
                ),
                ("payment_method", models.CharField(default="program_ticket", max_length=32)),
                ("ticket_price", models.DecimalField(decimal_places=2, default=0, max_digits=10)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "event",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="bookings",
                        to="core.event",
                    ),
                ),
                (
                    "member",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="bookings",
                        to="core.member",
                    ),
                ),
            ],
            options={
                "ordering": ("created_at", "id"),
            },
        ),
        migrations.CreateModel(
            name="ExternalCredential",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("integration", models.CharField(max_length=64, unique=True)),
                ("access_token", models.TextField(blank=True, default="")),
                ("refresh_token", models.TextField()),
                ("token_type", models.CharField(blank=True, default="Bearer", max_length=32)),
                ("expires_at", models.DateTimeField()),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
        ),
        migrations.CreateModel(
            name="DiscountCode",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("code", models.CharField(max_length=64, unique=True)),
                (
                    "discount_type",
                    models.CharField(
                        choices=[("percentage", "Percentage"), ("fixed", "Fixed amount")],
                        max_length=16,
                    ),
                ),
                ("discount_value", models.DecimalField(decimal_places=2, max_digits=10)),
                ("expiry_date", models.DateTimeField(blank=True, null=True)),
                ("max_uses", models.PositiveIntegerField(blank=True, null=True)),
                ("times_used", models.PositiveIntegerField(default=0)),
                ("is_active", models.BooleanField(default=True)),
            ],
            options={
                "ordering": ("code",),
            },
        ),
    ]
