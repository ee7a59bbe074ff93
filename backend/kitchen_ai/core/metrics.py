"""Prometheus metrics for the application"""
from prometheus_client import Counter, Gauge, REGISTRY

# Webhook metrics
try:
    webhook_events_counter = Counter(
        'kitchen_ai_webhook_events_total',
        'Total number of payment webhook events received',
        ['provider', 'outcome']
    )
except ValueError:
    webhook_events_counter = REGISTRY._names_to_collectors.get('kitchen_ai_webhook_events_total')

# Expiration metrics
try:
    subscriptions_expired_counter = Counter(
        'kitchen_ai_subscriptions_expired_total',
        'Total number of one-time subscriptions expired by the reconciler'
    )
except ValueError:
    subscriptions_expired_counter = REGISTRY._names_to_collectors.get('kitchen_ai_subscriptions_expired_total')

try:
    expiry_notifications_counter = Counter(
        'kitchen_ai_expiry_notifications_total',
        'Total number of expiring-soon notifications sent'
    )
except ValueError:
    expiry_notifications_counter = REGISTRY._names_to_collectors.get('kitchen_ai_expiry_notifications_total')

try:
    cron_runs_counter = Counter(
        'kitchen_ai_cron_runs_total',
        'Total number of scheduled job runs',
        ['job', 'status']
    )
except ValueError:
    cron_runs_counter = REGISTRY._names_to_collectors.get('kitchen_ai_cron_runs_total')

# Meal generation metrics
try:
    meals_generated_counter = Counter(
        'kitchen_ai_meals_generated_total',
        'Total number of meal slots generated',
        ['status']
    )
except ValueError:
    meals_generated_counter = REGISTRY._names_to_collectors.get('kitchen_ai_meals_generated_total')

try:
    llm_requests_counter = Counter(
        'kitchen_ai_llm_requests_total',
        'Total number of LLM requests',
        ['kind', 'outcome']
    )
except ValueError:
    llm_requests_counter = REGISTRY._names_to_collectors.get('kitchen_ai_llm_requests_total')

# Pricing metrics
try:
    exchange_rate_fetches_counter = Counter(
        'kitchen_ai_exchange_rate_lookups_total',
        'Total number of exchange rate lookups by source',
        ['source']
    )
except ValueError:
    exchange_rate_fetches_counter = REGISTRY._names_to_collectors.get('kitchen_ai_exchange_rate_lookups_total')

try:
    exchange_rate_gauge = Gauge(
        'kitchen_ai_exchange_rate_ars_per_usd',
        'Last ARS per USD exchange rate served'
    )
except ValueError:
    exchange_rate_gauge = REGISTRY._names_to_collectors.get('kitchen_ai_exchange_rate_ars_per_usd')
