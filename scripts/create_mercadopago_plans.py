#!/usr/bin/env python3
"""
Mercado Pago setup script - creates the weekly and monthly preapproval plans.
Run once per account, then set MERCADOPAGO_WEEKLY_PLAN_ID and
MERCADOPAGO_MONTHLY_PLAN_ID to the printed ids.
"""

import argparse
import json
import sys
from typing import Dict

from kitchen_ai.core.config import settings, PAID_PLANS
from kitchen_ai.core.errors import ApiError
from kitchen_ai.services.mercadopago_service import build_preapproval_plan, get_mercadopago_client


def create_plans(plans) -> Dict[str, str]:
    client = get_mercadopago_client()
    created = {}
    for plan in plans:
        body = build_preapproval_plan(plan)
        terms = body["auto_recurring"]
        print(f"  ➕ Creating {plan} plan: {terms['transaction_amount']} ARS every {terms['frequency']} {terms['frequency_type']}")
        data = client.create_preapproval_plan(body)
        created[plan] = data["id"]
        print(f"  ✓ Created {plan} plan: {data['id']}")
    return created


def main():
    parser = argparse.ArgumentParser(description='Create Mercado Pago preapproval plans.')
    parser.add_argument('--plan', choices=sorted(PAID_PLANS), action='append',
                        help='Plan to create (repeatable, defaults to all)')
    parser.add_argument('--json', action='store_true', help='Print the plan ids as JSON')
    args = parser.parse_args()

    if not settings.MERCADOPAGO_ACCESS_TOKEN:
        print("❌ MERCADOPAGO_ACCESS_TOKEN not found in environment.")
        sys.exit(1)

    print(f"\n{'='*60}\nCreating Mercado Pago Plans\n{'='*60}\n")
    try:
        created = create_plans(args.plan or ["weekly", "monthly"])
    except ApiError as e:
        print(f"❌ {e.message}")
        sys.exit(1)

    if args.json:
        print(json.dumps(created, indent=2))
    else:
        print(f"\n{'='*60}\n✅ Plans created - save these ids\n{'='*60}")
        for plan, plan_id in created.items():
            print(f"MERCADOPAGO_{plan.upper()}_PLAN_ID={plan_id}")


if __name__ == '__main__':
    main()
