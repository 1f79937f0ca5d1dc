#!/usr/bin/env python3
"""Report how the identity stores agree with each other.

This script:
1. Composes the stores from CARCARE_* / SUPABASE_* environment variables
2. Checks which stores answer at all
3. Lists every reconciled identity with its provenance
4. Flags divergent ids, role conflicts and shop status disagreements

Usage:
    CARCARE_ENV=development SUPABASE_URL=... SUPABASE_SERVICE_KEY=... \\
        python scripts/check_identity_consistency.py [email ...]
"""

import logging
import sys
from collections import Counter

from carcare.identity import IdentityService, IdentityStoreSettings, IdentityNotFoundError


def check_stores(service):
    """Print which stores answer a listing."""
    print("=" * 60)
    print("Store health")
    print("=" * 60)

    for adapter in service.adapters:
        if not adapter.is_enabled:
            print(f"  {adapter.store_kind.value:12} DISABLED  {adapter.config.error_message}")
            continue
        status = "OK" if adapter.test_connection() else "UNAVAILABLE"
        print(f"  {adapter.store_kind.value:12} {status}")


def summarize(service):
    """Print provenance counts over the deduplicated listing."""
    print("\n" + "=" * 60)
    print("Reconciled identities")
    print("=" * 60)

    identities = service.list_identities()
    print(f"\nFound {len(identities)} identities")

    provenance_counts = Counter(
        "+".join(kind.value for kind in identity.provenance) for identity in identities
    )
    print("\nIdentities by provenance:")
    for provenance, count in provenance_counts.most_common():
        print(f"  {provenance:40} {count}")

    stats = service.stats()
    print("\nTotals:")
    for key, value in stats.to_dict().items():
        print(f"  {key:20} {value}")

    return identities


def report_divergence(identities):
    """Print every identity the stores disagree about."""
    print("\n" + "=" * 60)
    print("Divergence")
    print("=" * 60)

    divergent = [identity for identity in identities if identity.divergent or identity.warnings]
    print(f"\nFound {len(divergent)} identities with divergent views")

    for identity in divergent:
        print(f"\n  Email: {identity.email}")
        print(f"  Canonical id: {identity.id}")
        print(f"  Role: {identity.role.value}")
        for kind, store_id in identity.store_ids.items():
            print(f"    {kind.value:12} {store_id}")
        for warning in identity.warnings:
            print(f"    ! {warning}")

    unavailable = sorted({kind.value for identity in identities for kind in identity.unavailable})
    if unavailable:
        print(f"\nStores unavailable during the listing: {unavailable}")


def inspect(service, email):
    """Print the reconciled view of a single email."""
    print("\n" + "=" * 60)
    print(f"Identity {email}")
    print("=" * 60)

    try:
        identity = service.get(email)
    except IdentityNotFoundError:
        print("  Not held by any reachable store")
        return

    for key, value in identity.to_dict().items():
        print(f"  {key:20} {value}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    settings = IdentityStoreSettings.from_env()
    print(f"CarCare identity consistency report ({settings.environment})")
    print("=" * 60)

    with IdentityService.from_settings(settings) as service:
        # Step 1: Store health
        check_stores(service)

        # Step 2: Listing
        identities = summarize(service)

        # Step 3: Divergence
        report_divergence(identities)

        # Step 4: Individual lookups
        for email in sys.argv[1:]:
            inspect(service, email)
