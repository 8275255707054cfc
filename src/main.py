#!/usr/bin/env python3
import sys
import asyncio
import logging
import argparse

from api import APIFactory
from config import load_config, GlobalConfig, InstanceConfig
from detector import detect_flavor
from errors import FediError
from flavor import Flavor
from streaming import EventKind


def parse_args(argv=None):
	"""
	Build and parse the CLI.

	Returns:
		argparse.Namespace with the subcommand, the server identity options
		(URL or config instance, flavor, token, user agent) and command
		specific flags.
	"""
	p = argparse.ArgumentParser(
		description="Fediverse client for Mastodon, Pleroma and Misskey"
	)

	p.add_argument(
		"--config",
		default=None,
		help="Path to config file"
	)

	p.add_argument(
		"--instance",
		default=None,
		help="Name of an instance defined in the config file"
	)

	p.add_argument(
		"--flavor",
		type=Flavor.parse,
		default=None,
		help="mastodon, pleroma or misskey (detected when omitted)"
	)

	p.add_argument(
		"--token",
		default=None,
		help="Access token"
	)

	p.add_argument(
		"--user-agent",
		default=None,
		help="Override the User-Agent header"
	)

	p.add_argument(
		"--verbose",
		action="store_true",
		help="Enable debug logging"
	)

	sub = p.add_subparsers(dest="command", required=True)

	detect = sub.add_parser("detect", help="Print the server flavor")
	detect.add_argument("url", nargs="?", default=None)

	instance = sub.add_parser("instance", help="Print instance information")
	instance.add_argument("url", nargs="?", default=None)

	timeline = sub.add_parser("timeline", help="Print a timeline page")
	timeline.add_argument("url", nargs="?", default=None)
	timeline.add_argument(
		"--kind",
		choices=("home", "public", "local"),
		default="public",
		help="Which timeline to fetch"
	)
	timeline.add_argument(
		"--limit",
		type=int,
		default=20,
		help="Number of statuses to fetch"
	)

	stream = sub.add_parser("stream", help="Print streaming events until interrupted")
	stream.add_argument("url", nargs="?", default=None)
	stream.add_argument(
		"--channel",
		choices=("user", "public", "local"),
		default="public",
		help="Which stream to follow"
	)
	stream.add_argument(
		"--limit",
		type=int,
		default=None,
		help="Stop after this many events"
	)

	return p.parse_args(argv)


def resolve_instance(args: argparse.Namespace) -> tuple[InstanceConfig, GlobalConfig]:
	"""
	Pick the server identity from the config file and/or the command line.
	Command line values override the config.
	"""
	config = load_config(args.config) if args.config else GlobalConfig()

	if args.instance:
		inst = config.find_instance(args.instance)
		if args.url:
			inst.base_url = args.url.rstrip("/")
	elif args.url:
		inst = InstanceConfig(name=args.url, base_url=args.url)
	else:
		raise ValueError("Either a URL or --instance is required")

	apply_overrides(inst, args)
	return inst, config


def apply_overrides(inst: InstanceConfig, args: argparse.Namespace) -> None:
	"""
	Override instance settings using CLI flags
	"""

	if args.flavor is not None:
		print(f"[CLI] override flavor: {args.flavor}")
		inst.flavor = args.flavor

	if args.token is not None:
		print("[CLI] override token")
		inst.access_token = args.token

	if args.user_agent is not None:
		print(f"[CLI] override user agent: {args.user_agent}")
		inst.user_agent = args.user_agent


async def run(args: argparse.Namespace) -> None:
	inst, config = resolve_instance(args)

	if args.command == "detect":
		flavor = await detect_flavor(
			inst.base_url,
			user_agent=inst.user_agent or config.http.user_agent,
			timeout=config.http.timeout_seconds,
		)
		print(f"[OK] {inst.base_url}: {flavor}")
		return

	client = await APIFactory.detect(inst, config)
	print(f"[OK] {inst.base_url} is {client.flavor}")

	if args.command == "instance":
		res = await client.get_instance()
		info = res.json
		print(f"{info.title} ({info.uri}) version {info.version}")
		if info.description:
			print(info.description)
		return

	if args.command == "timeline":
		fetch = {
			"home": client.get_home_timeline,
			"public": client.get_public_timeline,
			"local": client.get_local_timeline,
		}[args.kind]
		res = await fetch(limit=args.limit)
		for status in res.json:
			print(format_status(status))
		return

	if args.command == "stream":
		await follow_stream(client, args.channel, args.limit)


async def follow_stream(client, channel: str, limit: int | None) -> None:
	"""Print events from one stream; stops after `limit` events when set."""
	session = {
		"user": client.user_streaming,
		"public": client.public_streaming,
		"local": client.local_streaming,
	}[channel]()

	count = 0
	async with session:
		async for event in session:
			if event.kind is EventKind.RECONNECTING:
				notice = event.payload
				print(f"[WARN] reconnecting (attempt {notice.attempt}, {notice.delay:.1f}s): {notice.error}")
				continue
			print(format_event(event))
			count += 1
			if limit is not None and count >= limit:
				break


def format_status(status) -> str:
	return f"[{status.created_at.isoformat()}] @{status.account.acct}: {status.content}"


def format_event(event) -> str:
	if event.kind in (EventKind.UPDATE, EventKind.STATUS_UPDATE):
		return f"{event.kind.value} {format_status(event.payload)}"
	if event.kind is EventKind.NOTIFICATION:
		who = event.payload.account.acct if event.payload.account else "?"
		return f"notification {event.payload.type} from @{who}"
	if event.kind is EventKind.DELETE:
		return f"delete {event.payload}"
	return event.kind.value


def main(argv=None):
	"""
	Parse arguments, configure logging and run the selected command.
	"""
	args = parse_args(argv)

	logging.basicConfig(
		level=logging.DEBUG if args.verbose else logging.WARNING,
		format="%(asctime)s %(levelname)s %(name)s: %(message)s",
	)

	try:
		asyncio.run(run(args))
	except KeyboardInterrupt:
		print("\n[WARN] Interrupted by user")
	except (FediError, ValueError, KeyError, FileNotFoundError) as e:
		print(f"[ERROR] {e}")
		sys.exit(1)


if __name__ == "__main__":
	main()
