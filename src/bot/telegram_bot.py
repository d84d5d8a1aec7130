"""
Takeamin Assistant — Telegram Bot.

Telegram is the only user interface. Users set up vitamin plans, receive
reminders with Taken / Skip / Snooze buttons, and run the notification
diagnostics (status, audit, cleanup, repair, reset).

Security-first: unauthorized users are silently ignored.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta
from functools import wraps
from typing import TYPE_CHECKING, Any, Callable, Coroutine
from zoneinfo import ZoneInfo

from telegram import (
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    ReplyKeyboardMarkup,
    ReplyKeyboardRemove,
    Update,
)
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    ConversationHandler,
    MessageHandler,
    filters,
)

from src.config import settings
from src.data.models import (
    Frequency,
    QuietHours,
    ResponseType,
    Weekday,
    format_hhmm,
    parse_hhmm,
)
from src.ports.store_port import StoreError

if TYPE_CHECKING:
    from src.core.reconciliation import AuditReport, ReconciliationAuditor
    from src.core.reminders import ReminderService
    from src.core.status import StatusReporter
    from src.data.models import Plan, ReminderContent
    from src.data.repository import PlanRepository
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

TEST_REMINDER_DELAY_SECONDS = 5


# ---------------------------------------------------------------------------
# Security: silent-ignore decorator
# ---------------------------------------------------------------------------


def authorized_only(
    func: Callable[..., Coroutine[Any, Any, Any]],
) -> Callable[..., Coroutine[Any, Any, Any]]:
    """Decorator that silently ignores updates from unauthorized users."""

    @wraps(func)
    async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> Any:
        user = update.effective_user
        if user is None or user.id not in settings.ALLOWED_USER_IDS:
            uid = user.id if user else "unknown"
            logger.warning("Unauthorized access attempt from user_id=%s", uid)
            return None  # Silent ignore
        return await func(update, context)

    return wrapper


# ---------------------------------------------------------------------------
# Parsing and formatting helpers
# ---------------------------------------------------------------------------

_FREQUENCY_MAP = {
    "daily": Frequency.DAILY,
    "every day": Frequency.DAILY,
    "every other day": Frequency.EVERY_OTHER_DAY,
    "every-other-day": Frequency.EVERY_OTHER_DAY,
    "weekly": Frequency.WEEKLY,
    "custom": Frequency.CUSTOM,
}

_DURATION_RE = re.compile(r"^(\d+)\s*([dwm])$")


def _parse_frequency(text: str) -> Frequency | None:
    return _FREQUENCY_MAP.get(text.strip().lower())


def _parse_days(text: str) -> list[Weekday] | None:
    """'mon, wed, fri' → [MONDAY, WEDNESDAY, FRIDAY]; None if empty or invalid."""
    parts = [p for p in re.split(r"[,\s]+", text.strip()) if p]
    if not parts:
        return None
    try:
        days = [Weekday.parse(p) for p in parts]
    except ValueError:
        return None
    return list(dict.fromkeys(days))


def _parse_end_date(text: str, today: date | None = None) -> date | None:
    """Accept YYYY-MM-DD or a duration like '30d', '8w', '3m' (30-day months)."""
    today = today or date.today()
    text = text.strip().lower()
    match = _DURATION_RE.match(text)
    if match:
        amount, unit = int(match.group(1)), match.group(2)
        days = {"d": 1, "w": 7, "m": 30}[unit] * amount
        return today + timedelta(days=days)
    try:
        parsed = date.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed >= today else None


def _parse_quiet(text: str) -> QuietHours | None:
    """'13:00-14:00 weekdays' → QuietHours; recurrence defaults to daily.

    Windows must start before they end on the same day.
    """
    parts = text.split()
    if not parts or "-" not in parts[0]:
        return None
    start, end = parts[0].split("-", 1)
    try:
        start_t, end_t = parse_hhmm(start), parse_hhmm(end)
    except ValueError:
        return None
    if start_t >= end_t:
        return None
    recurring = parts[1].lower() if len(parts) > 1 else "daily"
    if recurring not in ("daily", "weekdays", "weekends"):
        return None
    return QuietHours(format_hhmm(start_t), format_hhmm(end_t), recurring)


def _describe_frequency(plan: Plan) -> str:
    if plan.frequency is Frequency.CUSTOM:
        return ", ".join(d.value[:3] for d in plan.custom_days or [])
    return plan.frequency.value.replace("-", " ")


def _format_plan(plan: Plan) -> str:
    return (
        f"`{plan.id[:8]}` — {plan.vitamin} at {format_hhmm(plan.reminder_time)} "
        f"({_describe_frequency(plan)}, until {plan.end_date.isoformat()}, "
        f"{len(plan.notification_handles)} reminder(s))"
    )


def _format_report(report: AuditReport) -> str:
    lines = [
        "*Notification audit*",
        f"Scheduled: {report.total_scheduled}",
        f"Plans: {report.total_plans}",
        f"Orphaned: {len(report.orphaned)}",
        f"Missing: {report.missing_count}",
        f"Duplicated: {len(report.duplicated)}",
        "",
        report.summary,
    ]
    return "\n".join(lines)


def _resolve_plan(plans: list[Plan], prefix: str) -> Plan | None:
    """Find a plan by full id or unique id prefix."""
    matches = [p for p in plans if p.id.startswith(prefix.strip())]
    return matches[0] if len(matches) == 1 else None


def _services(context: ContextTypes.DEFAULT_TYPE) -> tuple[ReminderService, ReconciliationAuditor]:
    return context.bot_data["reminders"], context.bot_data["auditor"]


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /start — opt in to reminders and say hello."""
    platform = context.bot_data["platform"]
    await platform.request_permission()
    await update.message.reply_text(
        "Welcome to *Takeamin*!\n\n"
        "I'll remind you to take your vitamins.\n"
        "• Use /addplan to set up a reminder\n"
        "• Use /plans to see your plans\n"
        "• Use /status to check that reminders are in sync\n\n"
        "Type /help for the full command list.",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_stop(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /stop — revoke reminder permission (existing jobs stay until reset)."""
    platform = context.bot_data["platform"]
    await platform.revoke_permission()
    await update.message.reply_text(
        "Reminders paused. New plans won't be scheduled until you /start again."
    )


@authorized_only
async def cmd_help(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /help — list available commands."""
    await update.message.reply_text(
        "*Available commands:*\n"
        "/addplan — Set up a vitamin reminder\n"
        "/plans — List your plans\n"
        "/settime <id> <HH:MM> — Change a plan's reminder time\n"
        "/deleteplan — Delete a plan and its reminders\n"
        "/smart on|off — Smart reminder timing\n"
        "/quiet HH:MM-HH:MM [weekdays|weekends] — Add quiet hours (/quiet clear)\n"
        "/insights — What I've learned about your timing\n"
        "/status — Reminder health\n"
        "/audit — Detailed reminder audit\n"
        "/cleanup — Remove orphaned reminders\n"
        "/repair — Reschedule missing reminders\n"
        "/reset — Rebuild all reminders from your plans\n"
        "/testreminder — Send a test reminder in a few seconds\n"
        "/stop — Pause reminders",
        parse_mode="Markdown",
    )


@authorized_only
async def cmd_plans(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /plans — list all plans."""
    reminders, _ = _services(context)
    try:
        plans = await reminders.list_plans()
    except StoreError as exc:
        logger.error("/plans error: %s", exc)
        await update.message.reply_text("Couldn't load plans. Please try again.")
        return

    if not plans:
        await update.message.reply_text("No plans yet. Use /addplan to create one.")
        return

    lines = ["*Your plans:*\n"] + [_format_plan(p) for p in plans]
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


@authorized_only
async def cmd_settime(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /settime <id> <HH:MM> — full cancel-and-reschedule of one plan."""
    from src.core.reminders import PlanNotFoundError

    reminders, _ = _services(context)
    args = context.args or []
    if len(args) != 2:
        await update.message.reply_text("Usage: /settime <plan id> <HH:MM>\nUse /plans to see IDs.")
        return

    try:
        new_time = parse_hhmm(args[1])
    except ValueError:
        await update.message.reply_text("Please give the time as HH:MM, e.g. 08:30.")
        return

    try:
        plan = _resolve_plan(await reminders.list_plans(), args[0])
        if plan is None:
            await update.message.reply_text("Plan not found. Use /plans to see IDs.")
            return
        updated, outcome = await reminders.edit_plan(plan.id, reminder_time=new_time)
    except PlanNotFoundError:
        await update.message.reply_text("Plan not found. Use /plans to see IDs.")
        return
    except StoreError as exc:
        logger.error("/settime error: %s", exc)
        await update.message.reply_text("Couldn't save the change. Please try again.")
        return

    msg = (
        f"✅ *{updated.vitamin}* now reminds at {format_hhmm(new_time)}.\n"
        f"{outcome.cancelled} old reminder(s) cancelled, "
        f"{len(outcome.handles)} scheduled."
    )
    if outcome.decision.adapted:
        msg += f"\nSmart timing: {format_hhmm(outcome.decision.time)} — {outcome.decision.reason}"
    if not outcome.scheduling_available:
        msg += "\n⚠️ Reminders are paused — use /start to enable them."
    await update.message.reply_text(msg, parse_mode="Markdown")


@authorized_only
async def cmd_deleteplan(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /deleteplan — show plans as buttons to pick from."""
    reminders, _ = _services(context)
    try:
        plans = await reminders.list_plans()
    except StoreError as exc:
        logger.error("/deleteplan error: %s", exc)
        await update.message.reply_text("Couldn't load plans. Please try again.")
        return

    if not plans:
        await update.message.reply_text("No plans to delete.")
        return

    keyboard = [
        [InlineKeyboardButton(
            f"{p.vitamin} ({format_hhmm(p.reminder_time)})", callback_data=f"delplan:{p.id}",
        )]
        for p in plans
    ]
    await update.message.reply_text(
        "Which plan do you want to delete?",
        reply_markup=InlineKeyboardMarkup(keyboard),
    )


@authorized_only
async def _handle_deleteplan_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """Handle the inline button tap to delete a plan."""
    from src.core.reminders import PlanNotFoundError

    reminders, _ = _services(context)
    query = update.callback_query
    await query.answer()

    plan_id = query.data.split(":", 1)[1]
    try:
        plan = await reminders.delete_plan(plan_id)
    except PlanNotFoundError:
        await query.edit_message_text("Plan not found or already deleted.")
        return
    except StoreError as exc:
        logger.error("deleteplan callback error: %s", exc)
        await query.edit_message_text("Something went wrong. Please try again.")
        return

    await query.edit_message_text(
        f"✅ Plan *{plan.vitamin}* deleted with its reminders.", parse_mode="Markdown",
    )


@authorized_only
async def cmd_smart(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /smart on|off — toggle smart reminder features."""
    repo: PlanRepository = context.bot_data["repository"]
    args = context.args or []
    try:
        current = await repo.load_smart_settings()
        if not args or args[0].lower() not in ("on", "off"):
            state = "on" if current.enabled else "off"
            await update.message.reply_text(f"Smart reminders are {state}. Usage: /smart on|off")
            return

        enabled = args[0].lower() == "on"
        await repo.save_smart_settings(current.with_enabled(enabled))
    except StoreError as exc:
        logger.error("/smart error: %s", exc)
        await update.message.reply_text("Couldn't save the setting. Please try again.")
        return

    await update.message.reply_text(
        f"Smart reminders turned {'on' if enabled else 'off'}. "
        "Changes apply the next time a plan is scheduled (/settime or /reset)."
    )


@authorized_only
async def cmd_quiet(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /quiet — add or clear quiet hours."""
    from src.data.models import BehaviorProfile

    repo: PlanRepository = context.bot_data["repository"]
    text = " ".join(context.args or [])
    clear = text.strip().lower() == "clear"

    window = None
    if not clear:
        window = _parse_quiet(text)
        if window is None:
            await update.message.reply_text(
                "Usage: /quiet HH:MM-HH:MM [daily|weekdays|weekends], or /quiet clear\n"
                "The window must start before it ends on the same day."
            )
            return

    try:
        profile = await repo.load_behavior_profile() or BehaviorProfile()
        if clear:
            profile.quiet_hours = []
        else:
            profile.quiet_hours.append(window)
        await repo.save_behavior_profile(profile)
    except StoreError as exc:
        logger.error("/quiet error: %s", exc)
        await update.message.reply_text("Couldn't save quiet hours. Please try again.")
        return

    if clear:
        await update.message.reply_text("Quiet hours cleared.")
    else:
        await update.message.reply_text(
            f"Quiet hours added: {window.start}-{window.end} ({window.recurring})."
        )


@authorized_only
async def cmd_insights(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /insights — show learned response patterns."""
    from src.core.behavior import get_behavior_insights

    repo: PlanRepository = context.bot_data["repository"]
    try:
        profile = await repo.load_behavior_profile()
    except StoreError as exc:
        logger.error("/insights error: %s", exc)
        await update.message.reply_text("Couldn't load your data. Please try again.")
        return

    if profile is None:
        await update.message.reply_text(
            "No data yet. Turn on /smart and respond to a few reminders."
        )
        return

    insights = get_behavior_insights(profile)
    await update.message.reply_text(
        f"Best hour: {insights.best_hour}:00\n"
        f"Best day: {insights.best_day}\n"
        f"Positive responses: {insights.total_responses:g}\n"
        f"Missed in a row: {insights.consecutive_misses}"
    )


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


@authorized_only
async def cmd_status(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /status — one-line health summary."""
    reporter: StatusReporter = context.bot_data["status"]
    try:
        status = await reporter.get_status()
    except Exception as exc:
        logger.error("/status error: %s", exc)
        await update.message.reply_text("System error while checking reminders.")
        return

    icon = "✅" if status.has_permissions and not status.has_issues else "⚠️"
    await update.message.reply_text(
        f"{icon} {status.summary}\n"
        f"Reminders scheduled: {status.total_scheduled}\n"
        f"Plans: {status.total_plans}"
    )


@authorized_only
async def cmd_audit(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /audit — detailed drift report."""
    _, auditor = _services(context)
    try:
        report = await auditor.audit()
    except Exception as exc:
        logger.error("/audit error: %s", exc)
        await update.message.reply_text(f"Audit failed: {exc}")
        return
    await update.message.reply_text(_format_report(report), parse_mode="Markdown")


@authorized_only
async def cmd_cleanup(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /cleanup — cancel orphaned reminders."""
    _, auditor = _services(context)
    try:
        removed = await auditor.cleanup_orphaned()
    except Exception as exc:
        logger.error("/cleanup error: %s", exc)
        await update.message.reply_text(f"Cleanup failed: {exc}")
        return
    await update.message.reply_text(f"🧹 Removed {removed} orphaned reminder(s).")


@authorized_only
async def cmd_repair(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /repair — reschedule plans with missing reminders."""
    _, auditor = _services(context)
    try:
        result = await auditor.repair_missing()
    except Exception as exc:
        logger.error("/repair error: %s", exc)
        await update.message.reply_text(f"Repair failed: {exc}")
        return

    msg = f"🔧 Repaired {result.plans_repaired} plan(s), {result.handles_scheduled} reminder(s) scheduled."
    if result.plans_failed:
        msg += f"\n⚠️ {result.plans_failed} plan(s) could not be rescheduled."
    await update.message.reply_text(msg)


@authorized_only
async def cmd_reset(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /reset — ask for confirmation before the destructive rebuild."""
    keyboard = [[
        InlineKeyboardButton("Reset", callback_data="reset:confirm"),
        InlineKeyboardButton("Cancel", callback_data="reset:cancel"),
    ]]
    await update.message.reply_text(
        "⚠️ This will cancel ALL reminders and rebuild them from your plans. Continue?",
        reply_markup=InlineKeyboardMarkup(keyboard),
    )


@authorized_only
async def _handle_reset_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """Run reset_system only after the explicit confirmation tap."""
    _, auditor = _services(context)
    query = update.callback_query
    await query.answer()

    if query.data != "reset:confirm":
        await query.edit_message_text("Reset cancelled.")
        return

    try:
        result = await auditor.reset_system()
    except Exception as exc:
        logger.error("Reset error: %s", exc)
        await query.edit_message_text(f"Reset failed: {exc}")
        return

    msg = (
        f"🔄 Reset complete: {result.plans_repaired} plan(s) rebuilt, "
        f"{result.handles_scheduled} reminder(s) scheduled."
    )
    if result.plans_failed:
        msg += f"\n⚠️ {result.plans_failed} plan(s) were not fully scheduled."
    await query.edit_message_text(msg)


# ---------------------------------------------------------------------------
# Reminder responses
# ---------------------------------------------------------------------------


async def _snooze_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
    notifier: NotificationPort = context.bot_data["notifier"]
    data = context.job.data
    await notifier.send_message(
        context.job.chat_id, f"⏰ Snoozed reminder: time for your {data['vitamin']}!",
    )


async def _test_reminder_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
    notifier: NotificationPort = context.bot_data["notifier"]
    await notifier.send_message(
        context.job.chat_id,
        f"🧪 Test reminder scheduled at {context.job.data['scheduled_at']}. "
        "If you can read this, reminders are reaching you.",
    )


@authorized_only
async def cmd_testreminder(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /testreminder — send a one-off message a few seconds from now.

    The job carries no reminder marker, so audits never see it.
    """
    scheduled_at = datetime.now(ZoneInfo(settings.TIMEZONE)).strftime("%H:%M:%S")
    context.job_queue.run_once(
        _test_reminder_job_callback,
        when=timedelta(seconds=TEST_REMINDER_DELAY_SECONDS),
        chat_id=update.effective_user.id,
        data={"scheduled_at": scheduled_at},
        name="test-reminder",
    )
    logger.info("Test reminder queued for user %s", update.effective_user.id)
    await update.message.reply_text(
        f"🧪 Test reminder on its way in {TEST_REMINDER_DELAY_SECONDS} seconds."
    )


@authorized_only
async def _handle_response_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """Handle Taken / Skip / Snooze taps on a reminder."""
    reminders, _ = _services(context)
    query = update.callback_query
    await query.answer()

    parts = query.data.split(":")
    action, plan_id = parts[0], parts[1]
    response = {
        "taken": ResponseType.TAKEN,
        "skip": ResponseType.IGNORED,
        "snooze": ResponseType.SNOOZED,
    }[action]

    try:
        await reminders.record_response(response)
    except StoreError as exc:
        logger.error("Failed to record %s for plan %s: %s", action, plan_id, exc)

    if response is ResponseType.TAKEN:
        await query.edit_message_text("✅ Nice! Logged as taken.")
        return
    if response is ResponseType.IGNORED:
        await query.edit_message_text("Skipped for now.")
        return

    minutes = int(parts[2])
    plan = None
    try:
        plan = next((p for p in await reminders.list_plans() if p.id == plan_id), None)
    except StoreError as exc:
        logger.error("Snooze lookup failed for plan %s: %s", plan_id, exc)
    vitamin = plan.vitamin if plan else "vitamins"

    context.job_queue.run_once(
        _snooze_job_callback,
        when=timedelta(minutes=minutes),
        chat_id=query.from_user.id,
        data={"plan_id": plan_id, "vitamin": vitamin},
        name=f"snooze-{plan_id}",
    )
    await query.edit_message_text(f"⏰ I'll remind you again in {minutes} minutes.")


async def deliver_reminder(
    content: ReminderContent,
    notifier: NotificationPort,
    repository: PlanRepository,
) -> None:
    """Send a fired reminder to every allowed user, with smart snooze options."""
    from src.core.behavior import smart_snooze_options

    now = datetime.now(ZoneInfo(settings.TIMEZONE)).replace(tzinfo=None)
    try:
        profile = await repository.load_behavior_profile()
    except StoreError as exc:
        logger.warning("Behavior profile unavailable: %s", exc)
        profile = None
    options = smart_snooze_options(now, profile)

    for chat_id in settings.ALLOWED_USER_IDS:
        try:
            await notifier.send_reminder(chat_id, content, options)
        except Exception as exc:
            logger.error("Failed to deliver reminder to %d: %s", chat_id, exc)


# ---------------------------------------------------------------------------
# /addplan conversation
# ---------------------------------------------------------------------------

(
    PLAN_VITAMIN,
    PLAN_FREQ,
    PLAN_DAYS,
    PLAN_TIME,
    PLAN_END,
    PLAN_CONFIRM,
) = range(6)

_PLAN_KEYS = ["plan_vitamin", "plan_freq", "plan_days", "plan_time", "plan_end"]


@authorized_only
async def cmd_addplan(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Handle /addplan — start plan setup."""
    keyboard = ReplyKeyboardMarkup(
        [["Vitamin D", "Vitamin C", "Iron"], ["Magnesium", "Omega-3", "Multivitamin"]],
        one_time_keyboard=True,
        resize_keyboard=True,
    )
    await update.message.reply_text(
        "Which vitamin? Pick one or type a name.", reply_markup=keyboard,
    )
    return PLAN_VITAMIN


async def addplan_vitamin(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Receive vitamin, ask for frequency."""
    context.user_data["plan_vitamin"] = update.message.text.strip()
    keyboard = ReplyKeyboardMarkup(
        [["Daily", "Every other day"], ["Weekly", "Custom"]],
        one_time_keyboard=True,
        resize_keyboard=True,
    )
    await update.message.reply_text("How often?", reply_markup=keyboard)
    return PLAN_FREQ


async def addplan_freq(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Receive frequency; custom plans go on to pick days."""
    freq = _parse_frequency(update.message.text)
    if freq is None:
        await update.message.reply_text(
            "Please choose daily, every other day, weekly or custom."
        )
        return PLAN_FREQ

    context.user_data["plan_freq"] = freq
    if freq is Frequency.CUSTOM:
        await update.message.reply_text(
            "Which days? e.g. 'mon, wed, fri'", reply_markup=ReplyKeyboardRemove(),
        )
        return PLAN_DAYS

    await update.message.reply_text(
        "What time? (HH:MM, e.g. 08:00)", reply_markup=ReplyKeyboardRemove(),
    )
    return PLAN_TIME


async def addplan_days(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Receive custom weekdays."""
    days = _parse_days(update.message.text)
    if not days:
        await update.message.reply_text("Please list at least one day, e.g. 'mon, wed, fri'.")
        return PLAN_DAYS
    context.user_data["plan_days"] = days
    await update.message.reply_text("What time? (HH:MM, e.g. 08:00)")
    return PLAN_TIME


async def addplan_time(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Receive reminder time, ask for end date."""
    try:
        context.user_data["plan_time"] = parse_hhmm(update.message.text)
    except ValueError:
        await update.message.reply_text("Please give the time as HH:MM, e.g. 08:30.")
        return PLAN_TIME

    keyboard = ReplyKeyboardMarkup(
        [["1m", "3m", "6m"]], one_time_keyboard=True, resize_keyboard=True,
    )
    await update.message.reply_text(
        "Until when? Pick a duration (1m = one month) or type a date (YYYY-MM-DD).",
        reply_markup=keyboard,
    )
    return PLAN_END


async def addplan_end(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Receive end date, show summary and ask for confirmation."""
    end = _parse_end_date(update.message.text)
    if end is None:
        await update.message.reply_text(
            "Please type a future date (YYYY-MM-DD) or a duration like 30d, 8w, 3m."
        )
        return PLAN_END
    context.user_data["plan_end"] = end

    freq: Frequency = context.user_data["plan_freq"]
    days = context.user_data.get("plan_days")
    when = ", ".join(d.value for d in days) if days else freq.value.replace("-", " ")
    lines = [
        f"*{context.user_data['plan_vitamin']}*",
        f"  Repeats: {when}",
        f"  Time: {format_hhmm(context.user_data['plan_time'])}",
        f"  Until: {end.isoformat()}",
        "\nConfirm?",
    ]
    keyboard = ReplyKeyboardMarkup(
        [["Yes", "No"]], one_time_keyboard=True, resize_keyboard=True,
    )
    await update.message.reply_text(
        "\n".join(lines), parse_mode="Markdown", reply_markup=keyboard,
    )
    return PLAN_CONFIRM


async def addplan_confirm(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Create the plan: schedule first, then persist with its handles."""
    reminders, _ = _services(context)

    answer = update.message.text.strip().lower()
    if answer not in ("yes", "y"):
        await update.message.reply_text(
            "Plan setup cancelled.", reply_markup=ReplyKeyboardRemove(),
        )
        _clear_plan_data(context)
        return ConversationHandler.END

    try:
        plan, outcome = await reminders.create_plan(
            vitamin=context.user_data["plan_vitamin"],
            frequency=context.user_data["plan_freq"],
            reminder_time=context.user_data["plan_time"],
            end_date=context.user_data["plan_end"],
            custom_days=context.user_data.get("plan_days"),
        )
    except (StoreError, ValueError) as exc:
        logger.error("Failed to create plan: %s", exc)
        await update.message.reply_text(
            "Sorry, couldn't save the plan. Please try again.",
            reply_markup=ReplyKeyboardRemove(),
        )
        _clear_plan_data(context)
        return ConversationHandler.END

    msg = f"✅ Plan *{plan.vitamin}* created with {len(outcome.handles)} reminder(s)."
    if outcome.decision.adapted:
        msg += (
            f"\nSmart timing moved it to {format_hhmm(outcome.decision.time)}: "
            f"{outcome.decision.reason}"
        )
    if not outcome.scheduling_available:
        msg += "\n⚠️ Reminders are paused — use /start to enable them, then /repair."
    await update.message.reply_text(
        msg, parse_mode="Markdown", reply_markup=ReplyKeyboardRemove(),
    )
    _clear_plan_data(context)
    return ConversationHandler.END


async def addplan_cancel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Cancel plan setup."""
    _clear_plan_data(context)
    await update.message.reply_text(
        "Plan setup cancelled.", reply_markup=ReplyKeyboardRemove(),
    )
    return ConversationHandler.END


def _clear_plan_data(context: ContextTypes.DEFAULT_TYPE) -> None:
    """Remove all plan-setup keys from user_data."""
    for k in _PLAN_KEYS:
        context.user_data.pop(k, None)


# ---------------------------------------------------------------------------
# Startup audit
# ---------------------------------------------------------------------------


async def startup_audit(
    auditor: ReconciliationAuditor, notifier: NotificationPort,
) -> AuditReport | None:
    """Detection-only audit at startup; tells users how to repair drift."""
    try:
        report = await auditor.audit()
    except Exception as exc:
        logger.error("Startup audit failed: %s", exc)
        return None

    if not report.has_issues:
        return report

    text = (
        f"⚠️ Your reminders are out of sync ({report.summary}).\n"
        "Use /repair to reschedule missing reminders or /cleanup to remove orphans."
    )
    for chat_id in settings.ALLOWED_USER_IDS:
        try:
            await notifier.send_message(chat_id, text)
        except Exception as exc:
            logger.error("Failed to send startup audit to %d: %s", chat_id, exc)
    return report


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(db_path: str | None = None) -> Application:
    """Build and configure the Telegram Application with all handlers.

    Wires the SQLite store, the job-queue scheduler and the core services
    into bot_data for handler access.
    """
    from src.adapters.telegram_notifier import TelegramNotifier
    from src.adapters.telegram_scheduler import TelegramJobScheduler
    from src.core.notification_scheduler import NotificationScheduler
    from src.core.reconciliation import ReconciliationAuditor
    from src.core.reminders import ReminderService
    from src.core.status import StatusReporter
    from src.data.db import SqliteKeyValueStore
    from src.data.repository import PlanRepository

    async def _post_init(application: Application) -> None:
        if settings.AUDIT_ON_STARTUP:
            await startup_audit(auditor, notifier)

    app = (
        ApplicationBuilder()
        .token(settings.TELEGRAM_BOT_TOKEN)
        .post_init(_post_init)
        .build()
    )

    repository = PlanRepository(SqliteKeyValueStore(db_path))
    notifier = TelegramNotifier(app.bot)

    async def _on_fire(content: ReminderContent) -> None:
        await deliver_reminder(content, notifier, repository)

    platform = TelegramJobScheduler(app.job_queue, repository, _on_fire)
    reminders = ReminderService(repository, NotificationScheduler(platform))
    auditor = ReconciliationAuditor(repository, reminders)

    app.bot_data["repository"] = repository
    app.bot_data["notifier"] = notifier
    app.bot_data["platform"] = platform
    app.bot_data["reminders"] = reminders
    app.bot_data["auditor"] = auditor
    app.bot_data["status"] = StatusReporter(platform, auditor)

    # Commands
    app.add_handler(CommandHandler("start", cmd_start))
    app.add_handler(CommandHandler("stop", cmd_stop))
    app.add_handler(CommandHandler("help", cmd_help))
    app.add_handler(CommandHandler("plans", cmd_plans))
    app.add_handler(CommandHandler("settime", cmd_settime))
    app.add_handler(CommandHandler("deleteplan", cmd_deleteplan))
    app.add_handler(CommandHandler("smart", cmd_smart))
    app.add_handler(CommandHandler("quiet", cmd_quiet))
    app.add_handler(CommandHandler("insights", cmd_insights))
    app.add_handler(CommandHandler("status", cmd_status))
    app.add_handler(CommandHandler("audit", cmd_audit))
    app.add_handler(CommandHandler("cleanup", cmd_cleanup))
    app.add_handler(CommandHandler("repair", cmd_repair))
    app.add_handler(CommandHandler("reset", cmd_reset))
    app.add_handler(CommandHandler("testreminder", cmd_testreminder))
    app.add_handler(CallbackQueryHandler(_handle_deleteplan_callback, pattern=r"^delplan:"))
    app.add_handler(CallbackQueryHandler(_handle_reset_callback, pattern=r"^reset:"))
    app.add_handler(CallbackQueryHandler(
        _handle_response_callback, pattern=r"^(taken|skip|snooze):",
    ))

    # /addplan conversation handler
    _text = filters.TEXT & ~filters.COMMAND
    addplan_conv = ConversationHandler(
        entry_points=[CommandHandler("addplan", cmd_addplan)],
        states={
            PLAN_VITAMIN: [MessageHandler(_text, addplan_vitamin)],
            PLAN_FREQ: [MessageHandler(_text, addplan_freq)],
            PLAN_DAYS: [MessageHandler(_text, addplan_days)],
            PLAN_TIME: [MessageHandler(_text, addplan_time)],
            PLAN_END: [MessageHandler(_text, addplan_end)],
            PLAN_CONFIRM: [MessageHandler(_text, addplan_confirm)],
        },
        fallbacks=[CommandHandler("cancel", addplan_cancel)],
    )
    app.add_handler(addplan_conv)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def main() -> None:
    """Entry point: build the app and start polling."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting Takeamin Assistant bot...")
    app = build_app()
    app.run_polling()


if __name__ == "__main__":
    main()
