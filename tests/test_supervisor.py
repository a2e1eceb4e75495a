import pytest

from fakes import CapturingNotifier, FakeConnection, make_account, make_user, wait_until
from mailbox_notifier.errors import ConnectError
from mailbox_notifier.monitor import MonitorPhase
from mailbox_notifier.prometheus import MonitorMetrics
from mailbox_notifier.supervisor import MonitorSupervisor


def make_supervisor(connection, notifier=None, **kwargs):
    return MonitorSupervisor(
        notifier or CapturingNotifier(),
        connection=connection,
        metrics=kwargs.pop("metrics", None) or MonitorMetrics(),
        **kwargs,
    )


def polling(supervisor, account_id):
    monitor = supervisor.get(account_id)
    return monitor is not None and monitor.state.phase is MonitorPhase.POLLING and monitor.state.cursor is not None


@pytest.mark.asyncio
async def test_start_launches_single_worker():
    connection = FakeConnection()
    supervisor = make_supervisor(connection)
    account = make_account(active=False)

    monitor = await supervisor.start(account, make_user())
    await wait_until(lambda: polling(supervisor, account.id))
    again = await supervisor.start(account, make_user())

    assert again is monitor
    assert account.is_active is True
    assert supervisor.running_ids() == [account.id]
    assert len(connection.connects) == 1
    assert b"mbn_active_monitors 1.0" in supervisor.metrics.generate_latest()
    await supervisor.shutdown()


@pytest.mark.asyncio
async def test_stop_deactivates_and_reports():
    connection = FakeConnection()
    notifier = CapturingNotifier()
    supervisor = make_supervisor(connection, notifier)
    account = make_account()

    await supervisor.start(account, make_user())
    await wait_until(lambda: polling(supervisor, account.id))
    assert await supervisor.stop(account.id) is True
    await wait_until(lambda: account.id not in supervisor._tasks)

    assert account.is_active is False
    assert notifier.texts[-1] == "Stopped fetching emails for test@test.com"
    assert b"mbn_active_monitors 0.0" in supervisor.metrics.generate_latest()
    await supervisor.shutdown()


@pytest.mark.asyncio
async def test_start_right_after_stop_replaces_stopping_worker():
    connection = FakeConnection()
    notifier = CapturingNotifier()
    supervisor = make_supervisor(connection, notifier)
    account = make_account()

    await supervisor.start(account, make_user())
    await wait_until(lambda: polling(supervisor, account.id))
    first_task = supervisor._tasks[account.id]

    await supervisor.stop(account.id)
    await supervisor.start(account, make_user())
    await wait_until(lambda: len(connection.connects) == 2 and polling(supervisor, account.id))

    assert first_task.done()
    assert account.is_active is True
    assert supervisor.is_running(account.id)
    assert supervisor.status(account.id)["retry_pending"] is False
    assert "Stopped fetching emails for test@test.com" in notifier.texts
    await supervisor.shutdown()


@pytest.mark.asyncio
async def test_restart_replaces_worker_without_stop_message():
    connection = FakeConnection()
    notifier = CapturingNotifier()
    supervisor = make_supervisor(connection, notifier)
    account = make_account()

    await supervisor.start(account, make_user())
    await wait_until(lambda: polling(supervisor, account.id))
    first_task = supervisor._tasks[account.id]

    assert await supervisor.restart(account.id) is True
    await wait_until(lambda: len(connection.connects) == 2 and polling(supervisor, account.id))

    assert first_task.done()
    assert supervisor._tasks[account.id] is not first_task
    assert account.is_active is True
    assert not any(text.startswith("Stopped fetching") for text in notifier.texts)
    await supervisor.shutdown()


@pytest.mark.asyncio
async def test_unknown_accounts_are_ignored():
    supervisor = make_supervisor(FakeConnection())

    assert await supervisor.stop(99) is False
    assert await supervisor.restart(99) is False
    assert await supervisor.remove(99) is False
    assert supervisor.status(99) is None


@pytest.mark.asyncio
async def test_remove_stops_worker_and_forgets_monitor():
    connection = FakeConnection()
    notifier = CapturingNotifier()
    supervisor = make_supervisor(connection, notifier)
    account = make_account()

    await supervisor.start(account, make_user())
    await wait_until(lambda: polling(supervisor, account.id))
    assert await supervisor.remove(account.id) is True

    assert supervisor.get(account.id) is None
    await wait_until(lambda: not supervisor._retiring)
    assert notifier.texts[-1] == "Stopped fetching emails for test@test.com"
    await supervisor.shutdown()


@pytest.mark.asyncio
async def test_failed_run_is_retried_after_poll_interval():
    connection = FakeConnection(connect_errors=[ConnectError("imap.test.com:993", "refused")])
    notifier = CapturingNotifier()
    supervisor = make_supervisor(connection, notifier, poll_scale=0.01)
    account = make_account()

    await supervisor.start(account, make_user())
    await wait_until(lambda: polling(supervisor, account.id))

    assert len(connection.connects) == 2
    assert notifier.texts == ["Successfully connected to mailbox for test@test.com"]
    await supervisor.shutdown()


@pytest.mark.asyncio
async def test_retries_stop_after_terminal_failure():
    connection = FakeConnection(connect_errors=[ConnectError("imap.test.com:993", "refused")] * 5)
    notifier = CapturingNotifier()
    supervisor = make_supervisor(connection, notifier, poll_scale=0.01)
    account = make_account()

    await supervisor.start(account, make_user())
    await wait_until(lambda: not account.is_active and not supervisor.is_running(account.id))
    await wait_until(lambda: not supervisor.status(account.id)["retry_pending"])

    assert len(connection.connects) == 3
    assert notifier.texts == ["Error connecting to imap server: imap.test.com:993 after 3 retries"]
    await supervisor.shutdown()


@pytest.mark.asyncio
async def test_stop_cancels_pending_retry():
    connection = FakeConnection(connect_errors=[ConnectError("imap.test.com:993", "refused")])
    supervisor = make_supervisor(connection, poll_scale=10)
    account = make_account()

    await supervisor.start(account, make_user())
    await wait_until(lambda: supervisor.status(account.id)["retry_pending"])
    await supervisor.stop(account.id)

    assert supervisor.status(account.id)["retry_pending"] is False
    assert account.is_active is False
    await supervisor.shutdown()


@pytest.mark.asyncio
async def test_shutdown_cancels_every_worker():
    connection = FakeConnection()
    supervisor = make_supervisor(connection)
    first = make_account(id=1)
    second = make_account(id=2, login="other@test.com")

    await supervisor.start(first, make_user())
    await supervisor.start(second, make_user())
    await wait_until(lambda: polling(supervisor, 1) and polling(supervisor, 2))
    await supervisor.shutdown()

    assert supervisor.running_ids() == []
    assert all(session.closed for session in connection.sessions)
