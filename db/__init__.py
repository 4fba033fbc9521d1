from .db import (
    configure_engine,
    get_engine,
    get_session,
    create_all,
    dispose_engine,
    get_user,
    upsert_user,
    insert_one_time_reminder,
    insert_recurring_reminder,
    list_one_time_reminders,
    list_recurring_reminders,
    delete_one_time_reminder,
    deactivate_recurring_reminder,
    get_weather_subscription,
    upsert_weather_subscription,
    deactivate_weather_subscription,
    fetch_due_one_time,
    fetch_recurring_at,
    fetch_active_weather_subscriptions,
    consume_one_time_reminder,
    mark_recurring_triggered,
    mark_weather_sent,
)  # noqa: F401
from .models import (
    Base,
    OneTimeReminder,
    RecurrenceKind,
    RecurringReminder,
    User,
    WeatherSubscription,
)  # noqa: F401
