from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from telegram import Chat, InlineKeyboardMarkup, Message, Update
from telegram.error import BadRequest, NetworkError

import bot
from gainers import GainerEntry
from settings import Interval

RANKING = [GainerEntry('DOGEUSDT', 12.5), GainerEntry('BTCUSDT', 5.0)]


@pytest.fixture
def ranking(monkeypatch):
    calls = []

    async def find_top_gainers(interval):
        calls.append(interval)
        return list(RANKING)

    monkeypatch.setattr(bot, 'find_top_gainers', find_top_gainers)
    return calls


def make_callback(data='int_5m', chat_id=99):
    query = SimpleNamespace(data=data, answer=AsyncMock())
    update = SimpleNamespace(callback_query=query, effective_chat=SimpleNamespace(id=chat_id))
    context = SimpleNamespace(bot=AsyncMock(), bot_data={})
    context.bot.send_message.return_value = SimpleNamespace(message_id=7)
    return update, context


def sent_texts(context):
    return [c.kwargs['text'] for c in context.bot.send_message.call_args_list]


async def test_callback_edits_loading_message(ranking):
    update, context = make_callback('int_5m')

    await bot.interval_callback(update, context)

    update.callback_query.answer.assert_awaited_once()
    assert ranking == ['5m']
    assert context.bot.send_message.await_count == 1
    assert 'Calculating' in sent_texts(context)[0]
    edit = context.bot.edit_message_text.call_args.kwargs
    assert edit['chat_id'] == 99
    assert edit['message_id'] == 7
    assert '1. *DOGEUSDT*: 12.50%' in edit['text']
    assert context.bot_data['request_counter'].count == 1


async def test_callback_falls_back_once_when_edit_fails(ranking):
    update, context = make_callback('int_1h')
    context.bot.edit_message_text.side_effect = BadRequest('Message to edit not found')

    await bot.interval_callback(update, context)

    assert context.bot.send_message.await_count == 2
    edited_text = context.bot.edit_message_text.call_args.kwargs['text']
    assert sent_texts(context)[1] == edited_text
    assert context.bot_data['request_counter'].count == 1


async def test_callback_double_failure_does_not_raise(ranking):
    update, context = make_callback('int_1m')
    context.bot.edit_message_text.side_effect = BadRequest('Message is too old')
    context.bot.send_message.side_effect = [SimpleNamespace(message_id=7), NetworkError('down')]

    await bot.interval_callback(update, context)

    assert context.bot.send_message.await_count == 2
    assert context.bot_data.get('request_counter', bot.RequestCounter()).count == 0


async def test_callback_continues_when_answer_fails(ranking):
    update, context = make_callback('int_1d')
    update.callback_query.answer.side_effect = BadRequest('Query is too old')

    await bot.interval_callback(update, context)

    assert ranking == ['1d']
    context.bot.edit_message_text.assert_awaited_once()


async def test_callback_stops_when_loading_message_fails(ranking):
    update, context = make_callback('int_5m')
    context.bot.send_message.side_effect = NetworkError('down')

    await bot.interval_callback(update, context)

    assert ranking == []
    context.bot.edit_message_text.assert_not_awaited()


async def test_callback_unknown_data_is_ignored(ranking):
    update, context = make_callback('int_10m')

    await bot.interval_callback(update, context)

    update.callback_query.answer.assert_awaited_once_with()
    assert ranking == []
    context.bot.send_message.assert_not_awaited()


async def test_callback_no_data_message(monkeypatch):
    async def find_top_gainers(interval):
        return []

    monkeypatch.setattr(bot, 'find_top_gainers', find_top_gainers)
    update, context = make_callback('int_30m')

    await bot.interval_callback(update, context)

    assert context.bot.edit_message_text.call_args.kwargs['text'].startswith('⚠️')


async def test_request_counter_accumulates(ranking):
    update, context = make_callback('int_5m')
    await bot.interval_callback(update, context)
    await bot.interval_callback(update, context)
    assert context.bot_data['request_counter'].count == 2


def test_interval_keyboard_has_every_interval():
    keyboard = bot.build_interval_keyboard()

    assert isinstance(keyboard, InlineKeyboardMarkup)
    data = [button.callback_data for row in keyboard.inline_keyboard for button in row]
    assert data == [interval.callback_data for interval in Interval]
    assert all(len(row) <= bot.KEYBOARD_ROW_SIZE for row in keyboard.inline_keyboard)


async def test_start_and_menu_commands_reply():
    message = SimpleNamespace(reply_text=AsyncMock())
    update = SimpleNamespace(effective_message=message)

    await bot.start_cmd(update, None)
    await bot.menu_cmd(update, None)

    greeting, menu = message.reply_text.call_args_list
    assert 'Welcome' in greeting.args[0]
    assert isinstance(menu.kwargs['reply_markup'], InlineKeyboardMarkup)


async def test_error_handler_logs_and_notifies(caplog):
    message = Message(
        message_id=3,
        date=datetime.now(timezone.utc),
        chat=Chat(id=55, type=Chat.PRIVATE),
        text='/binance',
    )
    update = Update(update_id=1, message=message)
    context = SimpleNamespace(bot=AsyncMock(), error=RuntimeError('boom'))
    context.bot.send_message.side_effect = NetworkError('down')

    await bot.error_handler(update, context)

    assert 'Unhandled error' in caplog.text
    assert context.bot.send_message.call_args.kwargs['chat_id'] == 55


async def test_error_handler_without_update():
    context = SimpleNamespace(bot=AsyncMock(), error=RuntimeError('boom'))
    await bot.error_handler(None, context)
    context.bot.send_message.assert_not_awaited()


async def test_start_escapes_menu_command(monkeypatch):
    monkeypatch.setattr(bot.settings, 'MENU_COMMAND', 'top_gainers')
    message = SimpleNamespace(reply_text=AsyncMock())

    await bot.start_cmd(SimpleNamespace(effective_message=message), None)

    text = message.reply_text.call_args.args[0]
    assert '/top\\_gainers' in text


async def test_callback_unknown_data_answer_failure_is_swallowed(ranking):
    update, context = make_callback('int_10m')
    update.callback_query.answer.side_effect = BadRequest('Query is too old')

    await bot.interval_callback(update, context)

    assert ranking == []
    context.bot.send_message.assert_not_awaited()


# --- lifecycle --------------------------------------------------------------

@pytest.fixture
def lifecycle(monkeypatch):
    calls = {'started': [], 'stopped': [], 'closed': 0}
    runner = object()

    async def start_keep_alive(host, port):
        calls['started'].append((host, port))
        return runner

    async def stop_keep_alive(r):
        calls['stopped'].append(r)

    async def close_http_session():
        calls['closed'] += 1

    monkeypatch.setattr(bot, 'start_keep_alive', start_keep_alive)
    monkeypatch.setattr(bot, 'stop_keep_alive', stop_keep_alive)
    monkeypatch.setattr(bot, 'close_http_session', close_http_session)
    calls['runner'] = runner
    return calls


def make_app():
    return SimpleNamespace(bot=AsyncMock(), bot_data={})


async def test_post_init_clears_webhook_and_sets_commands(lifecycle, monkeypatch):
    monkeypatch.setattr(bot.settings, 'KEEP_ALIVE_PORT', 0)
    app = make_app()

    await bot.post_init(app)

    app.bot.delete_webhook.assert_awaited_once()
    commands = app.bot.set_my_commands.call_args.args[0]
    assert [c.command for c in commands] == ['start', bot.settings.MENU_COMMAND]
    assert lifecycle['started'] == []
    assert 'keep_alive_runner' not in app.bot_data


async def test_post_init_continues_when_webhook_cleanup_fails(lifecycle, monkeypatch):
    monkeypatch.setattr(bot.settings, 'KEEP_ALIVE_PORT', 0)
    app = make_app()
    app.bot.delete_webhook.side_effect = NetworkError('down')
    app.bot.set_my_commands.side_effect = BadRequest('bad command')

    await bot.post_init(app)

    app.bot.set_my_commands.assert_awaited_once()


async def test_keep_alive_runner_started_and_stopped(lifecycle, monkeypatch):
    monkeypatch.setattr(bot.settings, 'KEEP_ALIVE_HOST', '127.0.0.1')
    monkeypatch.setattr(bot.settings, 'KEEP_ALIVE_PORT', 8081)
    app = make_app()

    await bot.post_init(app)
    assert lifecycle['started'] == [('127.0.0.1', 8081)]
    assert app.bot_data['keep_alive_runner'] is lifecycle['runner']

    await bot.on_shutdown(app)
    assert lifecycle['stopped'] == [lifecycle['runner']]
    assert 'keep_alive_runner' not in app.bot_data
    assert lifecycle['closed'] == 1


async def test_on_shutdown_without_keep_alive(lifecycle):
    app = make_app()

    await bot.on_shutdown(app)

    assert lifecycle['stopped'] == [None]
    assert lifecycle['closed'] == 1
