# leasing_engine/cli/__main__.py
from __future__ import annotations

import argparse

from .seed_demo import seed_demo


def main() -> None:
    p = argparse.ArgumentParser(description="Seed a demo org with a property, units and workflow config")
    p.add_argument("--org-slug", default="demo")
    p.add_argument("--org-name", default="Demo Property Management")
    p.add_argument("--user-email", default="leasing@demo.local")
    p.add_argument("--user-name", default="Leasing Admin")
    p.add_argument("--no-sample-application", action="store_true")
    args = p.parse_args()

    out = seed_demo(
        org_slug=args.org_slug,
        org_name=args.org_name,
        user_email=args.user_email,
        user_name=args.user_name,
        create_sample_application=(not args.no_sample_application),
    )
    print(
        {
            "ok": True,
            "org_slug": out.org_slug,
            "user_email": out.user_email,
            "property_id": out.property_id,
            "unit_ids": out.unit_ids,
            "workflow_config_id": out.workflow_config_id,
            "application_id": out.application_id,
        }
    )


if __name__ == "__main__":
    main()
