import argparse
import json
import logging
import mimetypes
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from registration_client.api import ApiError, RegistrationApiClient
from registration_client.drafts import (
    DraftAttachment,
    DraftCache,
    DraftLost,
    DraftState,
    LocalDraftStore,
    ReuploadRequired,
    SessionDraftStore,
)

logger = logging.getLogger("registration_client")

DEFAULT_DRAFT_DIR = Path.home() / ".esplendidez"

FORM_FIELDS = {
    "name": "participantName",
    "email": "participantEmail",
    "phone": "participantPhone",
    "college": "participantCollege",
    "roll": "participantRoll",
    "category": "eventCategory",
    "event": "eventName",
    "fee": "eventFee",
    "team_size": "teamSize",
    "team_name": "teamName",
    "team_captain": "teamCaptain",
}


def _attachment(path) -> DraftAttachment:
    path = Path(path)
    content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    return DraftAttachment(path.name, content_type, path.read_bytes())


def _cache(args) -> DraftCache:
    draft_dir = Path(args.draft_dir)
    return DraftCache(
        local_store=LocalDraftStore(draft_dir / "drafts.db"),
        session_store=SessionDraftStore(draft_dir / "session"),
    )


def cmd_register(args, client) -> int:
    data = {field: getattr(args, arg) for arg, field in FORM_FIELDS.items() if getattr(args, arg) is not None}
    if args.team_members:
        data["teamMembers"] = json.loads(args.team_members)
    cache = _cache(args)
    created = cache.save(data, _attachment(args.id_proof))
    print(f"Draft saved: {created.record.id}")
    print(f"Continue to payment: {cache.payment_url(created.record)}")
    return 0


def cmd_pay(args, client) -> int:
    cache = _cache(args)
    recovery = cache.recover(draft_id=args.draft_id, url_or_query=args.url)
    if recovery.state == DraftState.LOST:
        print("No saved registration found. Please register again.", file=sys.stderr)
        return 1

    logger.info("Recovered draft %s (%s)", recovery.record.id, recovery.state.value)
    if recovery.needs_reupload:
        if not args.id_proof:
            print("College ID file is required. Please upload your college ID proof (--id-proof).", file=sys.stderr)
            return 1
        cache.attach(recovery, _attachment(args.id_proof))

    screenshot = _attachment(args.screenshot) if args.screenshot else None
    try:
        result = cache.submit(recovery, client, args.utr, screenshot)
    except (DraftLost, ReuploadRequired) as exc:
        print(str(exc), file=sys.stderr)
        return 1
    print(f"Registered: {result['registrationId']}")
    return 0


def cmd_check_utr(args, client) -> int:
    available = client.check_utr(args.utr)
    print("available" if available else "already used")
    return 0 if available else 3


def cmd_status(args, client) -> int:
    registration = client.get_registration(args.registration_id)
    print(json.dumps(registration, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="esplendidez", description="Esplendidez 2026 registration client")
    parser.add_argument("--api-url", default=os.environ.get("FEST_API_URL"), help="Base URL of the registration API")
    parser.add_argument("--draft-dir", default=os.environ.get("FEST_DRAFT_DIR", str(DEFAULT_DRAFT_DIR)))
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    register = sub.add_parser("register", help="Save a registration draft and print the payment link")
    register.add_argument("--name", required=True)
    register.add_argument("--email", required=True)
    register.add_argument("--phone", required=True)
    register.add_argument("--college", required=True)
    register.add_argument("--roll", required=True)
    register.add_argument("--category", required=True)
    register.add_argument("--event", required=True)
    register.add_argument("--fee", required=True)
    register.add_argument("--team-size")
    register.add_argument("--team-name")
    register.add_argument("--team-captain")
    register.add_argument("--team-members", help="JSON list of {name, email}")
    register.add_argument("--id-proof", required=True, help="Path to the college ID proof")
    register.set_defaults(handler=cmd_register)

    pay = sub.add_parser("pay", help="Submit a saved draft with its UTR")
    pay.add_argument("--draft-id")
    pay.add_argument("--url", help="Payment link printed by the register command")
    pay.add_argument("--utr", required=True)
    pay.add_argument("--id-proof", help="Attach the ID proof again when the draft lost it")
    pay.add_argument("--screenshot", help="Payment screenshot")
    pay.set_defaults(handler=cmd_pay)

    check = sub.add_parser("check-utr", help="Check whether a UTR is still unused")
    check.add_argument("utr")
    check.set_defaults(handler=cmd_check_utr)

    status = sub.add_parser("status", help="Show a registration")
    status.add_argument("registration_id")
    status.set_defaults(handler=cmd_status)
    return parser


def main(argv=None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    client = RegistrationApiClient(base_url=args.api_url)
    try:
        return args.handler(args, client)
    except ApiError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
