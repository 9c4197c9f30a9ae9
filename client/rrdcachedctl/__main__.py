"""CLI entry point for the rrdcachedctl client.

Usage::

    rrdcachedctl --host 127.0.0.1 ping
    rrdcachedctl stats
    rrdcachedctl fetch power.rrd AVERAGE -- -s -1h
"""

import argparse
import configparser
import logging
import os
import sys

from . import (
    DEFAULT_PORT, DEFAULT_TIMEOUT, Command, RRDCachedConnection,
    RRDCachedError, ServerError, options,
)


def cmd_ping(conn, args):
    """Handle the 'ping' subcommand."""
    conn.ping()
    print("PONG")


def cmd_stats(conn, args):
    """Handle the 'stats' subcommand."""
    for line in conn.stats().to_lines():
        print(line)


def cmd_flush(conn, args):
    """Handle the 'flush' subcommand."""
    if args.file:
        conn.flush(args.file)
    else:
        conn.flushall()
    print("Flushed")


def cmd_pending(conn, args):
    """Handle the 'pending' subcommand."""
    for line in conn.pending(args.file):
        print(line)


def cmd_forget(conn, args):
    """Handle the 'forget' subcommand."""
    conn.forget(args.file)
    print("Forgotten")


def cmd_queue(conn, args):
    """Handle the 'queue' subcommand."""
    queued = conn.queue()
    if not queued:
        return
    print("{}\t{}".format("SIZE", "FILE"))
    for q in queued:
        print("{}\t{}".format(q.size, q.file))


def cmd_help(conn, args):
    """Handle the 'help' subcommand."""
    for line in conn.help(args.topic):
        print(line)


def cmd_update(conn, args):
    """Handle the 'update' subcommand."""
    values = [options.update_raw(v) for v in args.values]
    conn.update(args.file, *values)
    print("Queued {} value(s)".format(len(values)))


def cmd_wrote(conn, args):
    """Handle the 'wrote' subcommand."""
    conn.wrote(args.file)
    print("OK")


def cmd_first(conn, args):
    """Handle the 'first' subcommand."""
    print(int(conn.first(args.file, args.rra).timestamp()))


def cmd_last(conn, args):
    """Handle the 'last' subcommand."""
    print(int(conn.last(args.file).timestamp()))


def cmd_info(conn, args):
    """Handle the 'info' subcommand."""
    for entry in conn.info(args.file):
        print("{} = {}".format(entry.key, entry.value))


def cmd_create(conn, args):
    """Handle the 'create' subcommand."""
    create_options = []
    if args.step is not None:
        create_options.append(options.step(args.step))
    if args.start is not None:
        create_options.append(options.start(args.start))
    if args.overwrite:
        create_options.append(options.overwrite())
    if args.source:
        create_options.append(options.source(args.source))
    if args.template:
        create_options.append(options.template(args.template))
    data_sources = [d for d in args.definitions if d.startswith("DS:")]
    archives = [d for d in args.definitions if d.startswith("RRA:")]
    unknown = [d for d in args.definitions
               if not d.startswith(("DS:", "RRA:"))]
    if unknown:
        print("Error: expected DS:... or RRA:... definitions, got: {}".format(
            " ".join(unknown)), file=sys.stderr)
        sys.exit(1)
    conn.create(args.file, data_sources, archives, *create_options)
    print("Created")


def _fetch_options(parts):
    # argparse.REMAINDER may include a leading '--'; strip it
    if parts and parts[0] == "--":
        parts = parts[1:]
    return parts


def cmd_fetch(conn, args):
    """Handle the 'fetch' subcommand."""
    result = conn.fetch(args.file, args.cf, *_fetch_options(args.options))
    print("TIME\t{}".format("\t".join(result.names)))
    for row in result.rows:
        vals = ["nan" if v is None else repr(v) for v in row.values]
        print("{}\t{}".format(int(row.time.timestamp()), "\t".join(vals)))


def cmd_fetchbin(conn, args):
    """Handle the 'fetchbin' subcommand."""
    result = conn.fetchbin(args.file, args.cf, *_fetch_options(args.options))
    print("{}\t{}\t{}\t{}".format("NAME", "RECORDS", "SIZE", "ENDIAN"))
    for ds in result.ds:
        print("{}\t{}\t{}\t{}".format(ds.name, ds.records, ds.size,
                                      ds.endian))


def cmd_batch(conn, args):
    """Handle the 'batch' subcommand.

    Reads one command per line from a file (or stdin with '-').
    """
    if args.path == "-":
        text = sys.stdin.read()
    else:
        with open(args.path, "r") as f:
            text = f.read()
    commands = []
    for line in text.splitlines():
        parts = line.split()
        if not parts or parts[0].startswith("#"):
            continue
        commands.append(Command(parts[0], *parts[1:]))
    if not commands:
        print("Error: no commands to send", file=sys.stderr)
        sys.exit(1)
    conn.batch(*commands)
    print("{} command(s) succeeded".format(len(commands)))


def cmd_exec(conn, args):
    """Handle the 'exec' subcommand."""
    parts = _fetch_options(args.cmd)
    if not parts:
        print("Error: no command specified", file=sys.stderr)
        sys.exit(1)
    for line in conn.execute(*parts):
        print(line)


def _default_config_path():
    """Return the path to rrdcachedctl.conf in the client directory."""
    client_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    return os.path.join(client_dir, "rrdcachedctl.conf")


def _load_config(path, explicit):
    """Load settings from a config file.

    Args:
        path: File path to read.
        explicit: True if the user passed --config (errors are fatal).

    Returns a dict with keys 'host', 'port', 'timeout', 'unix' (any may
    be None).
    """
    if not os.path.exists(path):
        if explicit:
            print("Error: config file not found: {}".format(path),
                  file=sys.stderr)
            sys.exit(1)
        return {}

    config = configparser.ConfigParser()
    try:
        config.read(path)
    except configparser.Error as e:
        if explicit:
            print("Error: failed to parse config file: {}".format(e),
                  file=sys.stderr)
            sys.exit(1)
        print("Warning: failed to parse config file: {}".format(e),
              file=sys.stderr)
        return {}

    result = {}

    host = config.get("connection", "host", fallback=None)
    if host is not None:
        host = host.strip() or None
    result["host"] = host

    for key, getter in (("port", config.getint),
                        ("timeout", config.getfloat),
                        ("unix", config.getboolean)):
        try:
            result[key] = getter("connection", key, fallback=None)
        except ValueError as e:
            if explicit:
                print("Error: invalid {} in config file: {}".format(key, e),
                      file=sys.stderr)
                sys.exit(1)
            print("Warning: invalid {} in config file: {}".format(key, e),
                  file=sys.stderr)
            result[key] = None

    return result


def _configure_logging(verbose):
    if not verbose:
        return
    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def main() -> None:
    """Parse arguments and dispatch to the appropriate subcommand."""
    DEFAULT_HOST = "127.0.0.1"

    # --- Pre-parse: resolve env vars for help string defaults ---
    env_host = os.environ.get("RRDCACHED_ADDRESS") or None
    env_port_str = os.environ.get("RRDCACHED_PORT")
    env_port = None
    if env_port_str:
        try:
            env_port = int(env_port_str)
        except ValueError:
            print(
                "Error: RRDCACHED_PORT must be an integer, got: {!r}".format(
                    env_port_str
                ),
                file=sys.stderr,
            )
            sys.exit(1)

    parser = argparse.ArgumentParser(
        prog="rrdcachedctl",
        description="rrdcached client",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Daemon address, host[:port] or socket path with --unix "
             "(default: {})".format(
                 env_host if env_host is not None else DEFAULT_HOST),
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Daemon port (default: {})".format(
            env_port if env_port is not None else DEFAULT_PORT),
    )
    parser.add_argument(
        "--unix",
        action="store_true",
        default=None,
        help="Treat --host as a UNIX socket path",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        metavar="SECS",
        help="Per-operation timeout (default: {})".format(DEFAULT_TIMEOUT),
    )
    parser.add_argument(
        "--config",
        default=None,
        metavar="PATH",
        help="Path to config file (default: client/rrdcachedctl.conf)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log protocol traffic to stderr",
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.required = True

    subparsers.add_parser("ping", help="Ping the daemon")
    subparsers.add_parser("stats", help="Show daemon statistics")
    subparsers.add_parser("queue", help="List files on the write queue")

    p_flush = subparsers.add_parser(
        "flush", help="Flush one file, or everything with no file")
    p_flush.add_argument("file", nargs="?", default=None, help="RRD file")

    p_pending = subparsers.add_parser("pending",
                                      help="Show pending updates for a file")
    p_pending.add_argument("file", help="RRD file")

    p_forget = subparsers.add_parser(
        "forget", help="Drop a file from the cache (pending updates are lost)")
    p_forget.add_argument("file", help="RRD file")

    p_help = subparsers.add_parser("help", help="Show daemon command help")
    p_help.add_argument("topic", nargs="?", default=None,
                        help="Command to describe")

    p_update = subparsers.add_parser("update", help="Queue update values")
    p_update.add_argument("file", help="RRD file")
    p_update.add_argument("values", nargs="+", metavar="VALUE",
                          help="timestamp:value[:value...] (N: for now)")

    p_wrote = subparsers.add_parser(
        "wrote", help="Tell the daemon a file was written externally")
    p_wrote.add_argument("file", help="RRD file")

    p_first = subparsers.add_parser(
        "first", help="Print the first timestamp of an archive")
    p_first.add_argument("file", help="RRD file")
    p_first.add_argument("rra", nargs="?", type=int, default=0,
                         help="Archive index (default: 0)")

    p_last = subparsers.add_parser("last",
                                   help="Print the last update timestamp")
    p_last.add_argument("file", help="RRD file")

    p_info = subparsers.add_parser("info", help="Show RRD header information")
    p_info.add_argument("file", help="RRD file")

    p_create = subparsers.add_parser("create", help="Create an RRD file")
    p_create.add_argument("file", help="RRD file")
    p_create.add_argument("definitions", nargs="+", metavar="DEF",
                          help="DS:... and RRA:... definitions")
    p_create.add_argument("-s", "--step", type=int, default=None,
                          help="Base interval in seconds")
    p_create.add_argument("-b", "--start", type=int, default=None,
                          help="Start time (unix seconds)")
    p_create.add_argument("-O", "--overwrite", action="store_true",
                          help="Overwrite an existing file")
    p_create.add_argument("-r", "--source", default=None,
                          help="Prefill data from this RRD")
    p_create.add_argument("-t", "--template", default=None,
                          help="Copy definitions from this RRD")

    p_fetch = subparsers.add_parser("fetch", help="Fetch data as text rows")
    p_fetch.add_argument("file", help="RRD file")
    p_fetch.add_argument("cf", help="Consolidation function, e.g. AVERAGE")
    p_fetch.add_argument("options", nargs=argparse.REMAINDER,
                         help="Extra fetch arguments (use -- before flags)")

    p_fetchbin = subparsers.add_parser(
        "fetchbin", help="Show binary fetch descriptors")
    p_fetchbin.add_argument("file", help="RRD file")
    p_fetchbin.add_argument("cf", help="Consolidation function")
    p_fetchbin.add_argument("options", nargs=argparse.REMAINDER,
                            help="Extra fetch arguments (use -- before flags)")

    p_batch = subparsers.add_parser(
        "batch", help="Send commands from a file as one batch")
    p_batch.add_argument("path", help="Command file, one per line ('-' for "
                                      "stdin)")

    p_exec = subparsers.add_parser("exec", help="Send a raw command")
    p_exec.add_argument("cmd", nargs=argparse.REMAINDER,
                        help="Command and arguments (use -- before flags)")

    args = parser.parse_args()
    _configure_logging(args.verbose)

    # --- Resolve settings: CLI > env > config > default ---
    explicit = args.config is not None
    config_path = args.config if explicit else _default_config_path()
    config = _load_config(config_path, explicit)

    host = args.host or env_host or config.get("host") or DEFAULT_HOST
    port = args.port or env_port or config.get("port") or DEFAULT_PORT
    timeout = args.timeout or config.get("timeout") or DEFAULT_TIMEOUT
    unix = args.unix if args.unix is not None else bool(config.get("unix"))

    dispatch = {
        "ping": cmd_ping,
        "stats": cmd_stats,
        "flush": cmd_flush,
        "pending": cmd_pending,
        "forget": cmd_forget,
        "queue": cmd_queue,
        "help": cmd_help,
        "update": cmd_update,
        "wrote": cmd_wrote,
        "first": cmd_first,
        "last": cmd_last,
        "info": cmd_info,
        "create": cmd_create,
        "fetch": cmd_fetch,
        "fetchbin": cmd_fetchbin,
        "batch": cmd_batch,
        "exec": cmd_exec,
    }

    try:
        conn = RRDCachedConnection(host, port=port, timeout=timeout,
                                   unix=unix)
    except ValueError as e:
        print("Error: {}".format(e), file=sys.stderr)
        sys.exit(1)
    try:
        conn.connect()
    except OSError as e:
        print("Error: could not connect to {}: {}".format(host, e),
              file=sys.stderr)
        sys.exit(1)

    try:
        dispatch[args.command](conn, args)
    except ServerError as e:
        print("Error: {}".format(e), file=sys.stderr)
        sys.exit(1)
    except RRDCachedError as e:
        print("Protocol error: {}".format(e), file=sys.stderr)
        sys.exit(2)
    finally:
        try:
            conn.close()
        except OSError as e:
            print("Warning: error closing connection: {}".format(e),
                  file=sys.stderr)


if __name__ == "__main__":
    main()
