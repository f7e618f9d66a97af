import logfire

pytest_plugins = ["pytester", "promise_testkit.plugin"]

logfire.configure(send_to_logfire=False, console=False)
