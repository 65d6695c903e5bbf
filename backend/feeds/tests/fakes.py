"""Test doubles for the feeds core: manual scheduler, clock, notifier and realtime transport."""


class FakeTimer:
	def __init__(self, delay, callback):
		self.delay = delay
		self.callback = callback
		self.cancelled = False
		self.fired = False

	def cancel(self):
		self.cancelled = True

	def fire(self):
		self.fired = True
		self.callback()


class FakeScheduler:
	"""scheduler(delay, callback) that only runs callbacks when told to."""

	def __init__(self):
		self.timers = []

	def __call__(self, delay, callback):
		timer = FakeTimer(delay, callback)
		self.timers.append(timer)
		return timer

	@property
	def pending(self):
		return [timer for timer in self.timers if not timer.cancelled and not timer.fired]

	def run_pending(self):
		for timer in self.pending:
			timer.fire()


class FakeClock:
	def __init__(self, now=1000.0):
		self.now = now

	def __call__(self):
		return self.now

	def advance(self, seconds):
		self.now += seconds


class RecordingNotifier:
	def __init__(self):
		self.messages = []
		self.toasts = []
		self.navigations = []
		self.statuses = []

	def send(self, message):
		self.messages.append(message)

	def toast(self, level, title, message, duration_ms=4000):
		self.toasts.append((level, title, message, duration_ms))

	def navigate(self, path):
		self.navigations.append(path)

	def channel_status(self, status):
		self.statuses.append(status)

	def of_type(self, message_type):
		return [message for message in self.messages if message.get("type") == message_type]


class FakeChannel:
	def __init__(self, name):
		self.name = name
		self.bindings = []
		self.subscribe_calls = 0
		self.unsubscribe_calls = 0
		self.status_callback = None

	def on_postgres_changes(self, schema, table, event, filter, callback):
		self.bindings.append({
			"schema": schema,
			"table": table,
			"event": event,
			"filter": filter,
			"callback": callback,
		})

	def subscribe(self, status_callback):
		self.subscribe_calls += 1
		self.status_callback = status_callback

	def unsubscribe(self):
		self.unsubscribe_calls += 1

	def report(self, status, error=None):
		self.status_callback(status, error)

	def emit(self, table, event, new=None, old=None, filter=None):
		"""Deliver a change to every binding of table/event (and filter, if given)."""
		payload = {"schema": "public", "table": table, "eventType": event, "new": new or {}, "old": old or {}}
		for binding in list(self.bindings):
			if binding["table"] != table or binding["event"] not in ("*", event):
				continue
			if filter is not None and binding["filter"] != filter:
				continue
			binding["callback"](payload)


class FakeTransport:
	def __init__(self):
		self.channels = []

	def channel(self, name):
		channel = FakeChannel(name)
		self.channels.append(channel)
		return channel
