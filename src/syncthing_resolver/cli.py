import sys
import json
from datetime import (
    timedelta,
)

import humanize
from appdirs import (
    user_config_dir,
)
from eliot.twisted import (
    inline_callbacks,
)
from twisted.internet import defer
from twisted.internet.task import (
    react,
)
from twisted.python import usage
from twisted.python.filepath import (
    FilePath,
)

from .common import (
    NOT_FOUND,
    SyncFailure,
    TRANSPORT,
)
from .controller import (
    ACTIONS,
    MANUAL,
    ConflictController,
)
from .diff import (
    render_html,
    render_unified,
)
from .filestore import (
    LocalFileStore,
)
from .notify import (
    LoggingNotifier,
    StreamNotifier,
)
from .remote import (
    create_remote_client,
)
from .repository import (
    SyncthingRepository,
)
from .settings import (
    SettingsError,
    load_settings,
    save_settings,
)
from .util.eliotutil import (
    maybe_enable_eliot_logging,
    with_eliot_options,
)
from .util.file import (
    ns_to_seconds_float,
)


_default_config_path = user_config_dir("syncthing-resolver")


def _relative_path(path):
    """
    Normalise a user-supplied path inside a folder to the slash-separated
    form the file store uses.
    """
    path = path.replace(u"\\", u"/")
    while path.startswith(u"./"):
        path = path[2:]
    return path


class ShowConfigOptions(usage.Options):
    """
    Dump the connection settings as JSON.
    """
    description = (
        "Dump the Syncthing connection settings as JSON"
    )


def show_config(options):
    print(
        json.dumps(options.parent.settings.to_json(), indent=4),
        file=options.stdout,
    )


class SetConfigOptions(usage.Options):
    """
    Change the connection settings.
    """

    optParameters = [
        ("api-key", "k", None, "The API key of the Syncthing GUI/REST API"),
        ("protocol", None, None, "http or https"),
        ("ip-address", None, None, "Host name or IP address of the daemon"),
        ("port", "p", None, "Port of the daemon's REST API", int),
    ]
    description = (
        "Change the Syncthing connection settings"
    )

    def postOptions(self):
        if all(
            self[name] is None
            for name in ("api-key", "protocol", "ip-address", "port")
        ):
            raise usage.UsageError(
                "Specify at least one of --api-key, --protocol, --ip-address or --port"
            )


def set_config(options):
    """
    Change and save the connection settings.
    """
    config = options.parent
    try:
        settings = config.settings.evolve(
            api_key=options["api-key"] if options["api-key"] is not None else config.settings.api_key,
            protocol=options["protocol"],
            ip_address=options["ip-address"],
            port=options["port"],
        )
    except (TypeError, ValueError) as e:
        raise usage.UsageError(u"Invalid setting: {}".format(e.args[0]))
    save_settings(config.config_path, settings)
    config._settings = settings
    config.client.update_settings(settings)
    print(
        u"Saved settings to {}".format(config.config_path.path),
        file=options.stdout,
    )


class PingOptions(usage.Options):
    description = "Check that the Syncthing daemon answers"


@inline_callbacks
def ping(options):
    answer = yield options.parent.client.ping()
    print(answer, file=options.stdout)


class StatusOptions(usage.Options):
    description = "Show the Syncthing daemon's device and uptime"


@inline_callbacks
def status(options):
    repository = options.parent.repository
    system_status = yield repository.get_system_status()
    device = yield repository.get_this_device()
    print(u"Device: {} ({})".format(device.name, device.device_id), file=options.stdout)
    print(
        u"Uptime: {}".format(
            humanize.naturaldelta(timedelta(seconds=system_status.uptime)),
        ),
        file=options.stdout,
    )


class DevicesOptions(usage.Options):
    description = "List the devices configured in the Syncthing daemon"


@inline_callbacks
def devices(options):
    all_devices = yield options.parent.repository.get_devices()
    for device in all_devices:
        print(
            u"{} {} {}{}".format(
                device.short_id,
                device.name,
                u", ".join(device.addresses) or u"-",
                u" (paused)" if device.paused else u"",
            ),
            file=options.stdout,
        )


class FoldersOptions(usage.Options):
    optParameters = [
        ("device", "d", None, "Only folders shared with this device (ID, short ID or name)"),
    ]
    description = "List the folders configured in the Syncthing daemon"


@inline_callbacks
def folders(options):
    repository = options.parent.repository
    wanted = options["device"]
    if wanted is None:
        found = yield repository.get_folders()
    else:
        all_devices = yield repository.get_devices()
        matches = [
            device
            for device in all_devices
            if wanted in (device.device_id, device.name)
            or device.matches_short_id(wanted)
        ]
        if not matches:
            raise SyncFailure(
                kind=NOT_FOUND,
                message=u"No device called {}".format(wanted),
            )
        found = yield repository.get_folders_for_device(matches[0])
    for folder in found:
        print(
            u"{} ({}): {} [{}]".format(
                folder.label or folder.folder_id,
                folder.folder_id,
                folder.path,
                folder.type,
            ),
            file=options.stdout,
        )


class StartOptions(usage.Options):
    optParameters = [
        ("executable", None, None, "The syncthing binary (default: found on PATH)"),
    ]
    description = "Start the Syncthing daemon and wait for it to answer"


@inline_callbacks
def start(options):
    repository = options.parent.repository
    if options["executable"] is not None:
        repository.executable = options["executable"]
    running = yield repository.start_syncthing()
    if not running:
        raise SyncFailure(
            kind=TRANSPORT,
            message=u"Syncthing did not answer within {} seconds".format(
                int(repository.start_timeout),
            ),
        )
    print(u"Syncthing is running", file=options.stdout)


class StopOptions(usage.Options):
    description = "Ask the Syncthing daemon to shut down"


@inline_callbacks
def stop(options):
    yield options.parent.repository.stop_syncthing()
    print(u"Syncthing is shutting down", file=options.stdout)


class _FolderOptions(usage.Options):
    optParameters = [
        ("folder", "f", None, "The local directory of a Syncthing folder"),
    ]

    def postOptions(self):
        if self["folder"] is None:
            raise usage.UsageError("--folder / -f is required")
        if not FilePath(self["folder"]).isdir():
            raise usage.UsageError(
                "{} is not a directory".format(self["folder"])
            )


class ConflictsOptions(_FolderOptions):
    optFlags = [
        ("json", None, "Output the conflicts as JSON"),
        ("origin", None, "Ask the daemon which device each conflict came from"),
    ]
    description = "List the conflicting files in a folder"


def _describe_file(file_ref, now):
    modified = now - ns_to_seconds_float(file_ref.mtime_ns)
    return u"{} ({}, modified {})".format(
        file_ref.path,
        humanize.naturalsize(file_ref.size),
        humanize.naturaltime(timedelta(seconds=max(modified, 0))),
    )


@inline_callbacks
def conflicts(options):
    controller = options.parent.controller_for(options["folder"])
    groups = yield controller.list_conflicts()
    if isinstance(groups, SyncFailure):
        raise groups

    if options["json"]:
        print(json.dumps([group.to_json() for group in groups], indent=4), file=options.stdout)
        return

    if not groups:
        print(u"No conflicts", file=options.stdout)
        return

    now = options.parent.reactor.seconds()
    for group in groups:
        print(group.key, file=options.stdout)
        if group.original is None:
            print(u"  original: (deleted)", file=options.stdout)
        else:
            print(u"  original: {}".format(_describe_file(group.original, now)), file=options.stdout)
        for conflict in group.conflicts:
            print(u"  conflict: {}".format(_describe_file(conflict, now)), file=options.stdout)
            if options["origin"]:
                device = yield controller.describe_origin(conflict)
                if isinstance(device, SyncFailure):
                    print(u"    from: unknown ({})".format(device.message), file=options.stdout)
                else:
                    print(u"    from: {} ({})".format(device.name, device.short_id), file=options.stdout)


class DiffOptions(_FolderOptions):
    optParameters = [
        ("file", None, None, "Any file of the conflict (or its original path)"),
        ("conflict", None, None, "Only compare against this conflicting file"),
    ]
    optFlags = [
        ("html", None, "Output an HTML table instead of a unified diff"),
        ("colorblind", None, "Use colorblind-friendly colors (with --html)"),
    ]
    description = "Show how each conflicting file differs from the original"

    def postOptions(self):
        _FolderOptions.postOptions(self)
        if self["file"] is None:
            raise usage.UsageError("--file is required")


@inline_callbacks
def diff(options):
    if options["html"]:
        def renderer(result):
            return render_html(result, colorblind=options["colorblind"])
    else:
        renderer = render_unified
    controller = options.parent.controller_for(options["folder"], renderer=renderer)

    files = yield controller.get_diff_files(_relative_path(options["file"]))
    if isinstance(files, SyncFailure):
        raise files

    conflicting = files.conflicting_files
    if options["conflict"] is not None:
        wanted = _relative_path(options["conflict"])
        conflicting = [f for f in conflicting if f.path == wanted]
        if not conflicting:
            raise SyncFailure(
                kind=NOT_FOUND,
                message=u"{} is not a conflicting variant of {}".format(wanted, files.group.key),
                paths=[wanted],
            )

    for conflict in conflicting:
        result = yield controller.get_diff(files.original_file, conflict)
        if isinstance(result, SyncFailure):
            raise result
        if result.endings_differ:
            print(
                u"{} and {} differ only in line endings or the final newline".format(
                    files.original_file.path,
                    conflict.path,
                ),
                file=options.stdout,
            )
        elif result.is_identical:
            print(
                u"{} and {} are identical".format(files.original_file.path, conflict.path),
                file=options.stdout,
            )
        else:
            content = controller.renderer(result)
            options.stdout.write(content)
            if not content.endswith(u"\n"):
                options.stdout.write(u"\n")


class ResolveOptions(_FolderOptions):
    optParameters = [
        ("file", None, None, "Any file of the conflict (or its original path)"),
        ("choose", None, None, "The conflicting file the action applies to"),
        ("action", "a", None, "One of: {}".format(", ".join(ACTIONS))),
    ]
    description = "Resolve a conflict"

    def postOptions(self):
        _FolderOptions.postOptions(self)
        for name in ("file", "choose", "action"):
            if self[name] is None:
                raise usage.UsageError("--{} is required".format(name))
        if self["action"] not in ACTIONS:
            raise usage.UsageError(
                "--action must be one of: {}".format(", ".join(ACTIONS))
            )


@inline_callbacks
def resolve(options):
    controller = options.parent.controller_for(
        options["folder"],
        notifier=StreamNotifier(options.stdout),
    )
    files = yield controller.get_diff_files(_relative_path(options["file"]))
    if isinstance(files, SyncFailure):
        raise files

    outcome = yield controller.resolve_conflict(
        files.group,
        _relative_path(options["choose"]),
        options["action"],
    )
    if outcome.failure is not None:
        raise outcome.failure

    if options["action"] == MANUAL:
        base, chosen = outcome.review
        root = FilePath(options["folder"])
        for file_ref in (base, chosen):
            print(root.preauthChild(file_ref.path).path, file=options.stdout)
    elif outcome.resolved_file is not None:
        print(u"Kept {}".format(outcome.resolved_file.path), file=options.stdout)


@with_eliot_options
class BaseOptions(usage.Options):
    stdin = sys.stdin
    stdout = sys.stdout
    stderr = sys.stderr

    optFlags = [
        ["version", "V", "Display version numbers."],
    ]
    optParameters = [
        ("config", "c", _default_config_path,
         "The directory containing configuration"),
    ]

    _settings = None  # lazy-instantiated by .settings @property
    _http_client = None  # may be set by tests
    _client = None  # lazy-instantiated by .client @property
    _repository = None  # lazy-instantiated by .repository @property

    @property
    def config_path(self):
        """
        The FilePath where our settings are located
        """
        return FilePath(self['config'])

    @property
    def settings(self):
        """
        The ConnectionSettings, loaded once.
        """
        if self._settings is None:
            try:
                self._settings = load_settings(self.config_path)
            except SettingsError as e:
                raise usage.UsageError(
                    u"Unable to load configuration: {}".format(e)
                )
        return self._settings

    @property
    def client(self):
        if self._client is None:
            self._client = create_remote_client(
                self.reactor,
                self.settings,
                http_client=self._http_client,
            )
        return self._client

    @property
    def repository(self):
        if self._repository is None:
            self._repository = SyncthingRepository(
                client=self.client,
                reactor=self.reactor,
            )
        return self._repository

    def controller_for(self, folder, notifier=None, renderer=render_unified):
        """
        :returns ConflictController: acting on the files in ``folder``.
        """
        return ConflictController(
            store=LocalFileStore(FilePath(folder)),
            repository=self.repository,
            notifier=LoggingNotifier() if notifier is None else notifier,
            renderer=renderer,
        )


class SyncthingResolverCommand(BaseOptions):

    subCommands = [
        ["show-config", None, ShowConfigOptions, "Dump the connection settings as JSON."],
        ["set-config", None, SetConfigOptions, "Change the connection settings."],
        ["ping", None, PingOptions, "Check that the daemon answers."],
        ["status", None, StatusOptions, "Show the daemon's device and uptime."],
        ["devices", None, DevicesOptions, "List configured devices."],
        ["folders", None, FoldersOptions, "List configured folders."],
        ["start", None, StartOptions, "Start the daemon."],
        ["stop", None, StopOptions, "Stop the daemon."],
        ["conflicts", None, ConflictsOptions, "List conflicting files in a folder."],
        ["diff", None, DiffOptions, "Compare conflicting files with their original."],
        ["resolve", None, ResolveOptions, "Resolve a conflict."],
    ]
    optFlags = [
        ["debug", "d", "Print full stack-traces"],
    ]
    description = (
        "Find the files Syncthing marked as conflicting, compare them with "
        "their original and decide which version to keep."
    )

    @property
    def parent(self):
        return None

    @parent.setter
    def parent(self, ignored):
        pass

    def opt_version(self):
        """
        Display syncthing-resolver version and exit.
        """
        from . import __version__
        print("syncthing-resolver version {}".format(__version__), file=self.stdout)
        sys.exit(0)

    def postOptions(self):
        if not hasattr(self, 'subOptions'):
            raise usage.UsageError("must specify a subcommand")

    def getSynopsis(self):
        return "Usage: syncthing-resolver [global-options] <subcommand> [subcommand-options]"

    def getUsage(self, width=None):
        t = BaseOptions.getUsage(self, width)
        t += (
            "Please run e.g. 'syncthing-resolver resolve --help' for more "
            "details on each subcommand.\n"
        )
        return t


subDispatch = {
    "show-config": show_config,
    "set-config": set_config,
    "ping": ping,
    "status": status,
    "devices": devices,
    "folders": folders,
    "start": start,
    "stop": stop,
    "conflicts": conflicts,
    "diff": diff,
    "resolve": resolve,
}


def dispatch_syncthing_resolver_command(reactor, args, stdout=None, stderr=None, http_client=None):
    """
    Run a syncthing-resolver command with the given args

    :param http_client: override the treq client used to reach the daemon

    :returns: a Deferred which fires with the result of doing this
        (sub)command.
    """
    options = SyncthingResolverCommand()
    options.reactor = reactor
    if stdout is not None:
        options.stdout = stdout
    if stderr is not None:
        options.stderr = stderr
    if http_client is not None:
        options._http_client = http_client

    try:
        options.parseOptions(args)
    except usage.UsageError as e:
        print("Error: {}".format(e), file=options.stderr)
        # if a user just typed "syncthing-resolver" don't make them re-run
        # with "--help" just to see the sub-commands they were supposed to
        # use
        if not args:
            print(options, file=options.stderr)
        raise SystemExit(1)

    return run_syncthing_resolver_options(options)


# If `--eliot-task-fields` is passed, then `maybe_enable_eliot_logging` will
# start an action that is meant to be a parent of *all* logs this process
# generates. Since we call that function in this generator, if we used
# `eliot.inline_callbacks` here, eliot would remove that action context from
# it stack when when we yield to reactor.
@defer.inlineCallbacks
def run_syncthing_resolver_options(options):
    """
    Runs a subcommand with the provided options.

    :param options: already-parsed options.

    :returns: a Deferred which fires with the result of doing this
        (sub)command.
    """
    so = options.subOptions
    so.stdout = options.stdout
    so.stderr = options.stderr

    maybe_enable_eliot_logging(options, options.reactor)

    f = subDispatch[options.subCommand]

    # we want to let exceptions out to the top level if --debug is on
    # because this gives better stack-traces
    if options['debug']:
        yield f(so)

    else:
        try:
            yield f(so)

        except SyncFailure as e:
            print(u"Error: {}".format(e), file=options.stderr)
            if e.kind == TRANSPORT:
                # give user more information if we can't reach the daemon
                print(
                    u"   Attempted access via {}".format(options.client.endpoint_url().to_text()),
                    file=options.stderr,
                )
            raise SystemExit(1)

        except Exception as e:
            print(u"Error: {}".format(e), file=options.stderr)
            raise SystemExit(1)


def _entry():
    """
    Implement the *syncthing-resolver* console script declared in
    ``setup.py``.

    :return: ``None``
    """
    def main(reactor):
        return dispatch_syncthing_resolver_command(reactor, sys.argv[1:])
    return react(main)
