"""
Maryland assisted living facilities.
JSON API behind the MHCC Health Care Quality Reports site.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from ..errors import FetchError, ParseError
from ..http_client import get_json
from ..models import WorkItem
from ..utils import join_labels
from .base import Jurisdiction

logger = logging.getLogger(__name__)

SEARCH_PATH = "api/AssistedLiving/Search"
PROFILE_PATH = "api/AssistedLiving/Profile/{id}"

OPTIONAL_ENDPOINTS = {
    "overview": "api/AssistedLiving/Profile/{id}/Overview",
    "vaccination": "api/AssistedLiving/Profile/{id}/StaffFluVacc",
    "inspect": "api/AssistedLiving/Profile/{id}/Inspect",
    "patients": "api/AssistedLiving/Profile/{id}/PatientChar",
    "services": "api/AssistedLiving/Profile/{id}/AvailableServices",
}

AGE_LABELS = {
    "AGE_65-74_YEARS_%": "65-74",
    "AGE_75-84_YEARS_%": "75-84",
    "AGE_85-94_YEARS_%": "85-94",
    "AGE_GTE95_YEARS_%": "95+",
    "AGE_LTE64_YEARS_%": "<=64",
    "AGE_UNKNOWN_%": "Unknown",
}

RACE_LABELS = {
    "African": "African American",
    "AmericanIndian": "American Indian",
    "Asian": "Asian",
    "Hawaiian": "Hawaiian/Pacific Islander",
    "Hispanic": "Hispanic",
    "Mixed": "Mixed Race",
    "Other": "Other",
    "White": "White",
}

SERVICE_LABELS = {
    "hasSecureAlzheimersUnit": "Secure Alzheimer's Unit",
    "has24HourAwakeStaff": "24-Hour Awake Staff",
    "hasAlzheimersCare": "Alzheimer's Care",
    "hasBarberCare": "Barber Services",
    "hasBeautyCare": "Beauty Services",
    "hasBehavioralManagement": "Behavioral Management",
    "hasCatheterCare": "Catheter Care",
    "hasCentralIvTherapy": "Central IV Therapy",
    "hasColostomyCare": "Colostomy Care",
    "hasDecubitusCare": "Decubitus Care",
    "hasDementiaCare": "Dementia Care",
    "hasDialysis": "Dialysis",
    "hasDispenseMedications": "Dispense Medications",
    "hasHomeHealthAngencyServices": "Home Health Agency Services",
    "hasHospicecare": "Hospice Care",
    "hasIncontinenceCare": "Incontinence Care",
    "hasLaundryServices": "Laundry Services",
    "hasMeals": "Meals",
    "hasOccupationalTherapy": "Occupational Therapy",
    "hasPeripheralIvTherapy": "Peripheral IV Therapy",
    "hasPeritonealDialysis": "Peritoneal Dialysis",
    "hasPersonalCare": "Personal Care",
    "hasPhysicalTherapy": "Physical Therapy",
    "hasPortableOxygenCare": "Portable Oxygen Care",
    "hasRehabilitationCare": "Rehabilitation Care",
    "hasRespiteCare": "Respite Care",
    "hasSpeechLanguageTherapy": "Speech/Language Therapy",
    "hasSuctioningCare": "Suctioning Care",
    "hasTotalParenteralNutrition": "Total Parenteral Nutrition",
    "hasTracheostomyCare": "Tracheostomy Care",
    "hasTransportationServices": "Transportation Services",
    "hasTubeFeeding": "Tube Feeding",
    "hasVentilatorCare": "Ventilator Care",
    "hasWanderGuard": "Wander Guard",
}

COST_FIELDS = [
    ("privateRoomMinCostPerDay", "private_room_min_cost_per_day"),
    ("privateRoomMaxCostPerDay", "private_room_max_cost_per_day"),
    ("semiPrivateRoomMinCostPerDay", "semi_private_room_min_cost_per_day"),
    ("semiPrivateRoomMaxCostPerDay", "semi_private_room_max_cost_per_day"),
    ("tripleRoomMinCostPerDay", "triple_room_min_cost_per_day"),
    ("tripleRoomMaxCostPerDay", "triple_room_max_cost_per_day"),
    ("apartmentMinCostPerDay", "apartment_min_cost_per_day"),
    ("apartmentMaxCostPerDay", "apartment_max_cost_per_day"),
]

MD_COLUMNS = [
    "id", "facility_id", "name", "address1", "address2", "city", "state",
    "zip_code", "county", "phone", "website", "image_url", "fac_last_updated",
    # Overview
    "total_licensed_beds", "date_facility_first_opened", "is_for_profit",
    "type_of_business_org", "owner", "level_of_care", "is_ccrc",
    "participating_in_medicaid_waiver",
    # Costs
    *[column for _, column in COST_FIELDS],
    # Alzheimer's care
    "has_alzheimer_level_mild", "has_alzheimer_level_mod",
    "has_alzheimer_level_sev", "has_cna_training_program",
    "hospice_affiliations",
    # Vaccination
    "has_influenza_gold_star", "has_mandatory_vacc_policy",
    "has_mandatory_covid_policy", "vaccination_history", "md_vac_rate_avg",
    # Inspection
    "latest_def_count_survey", "latest_def_count_complaint",
    "latest_def_count_survey_md", "latest_def_count_complaint_md",
    "reports_downloaded",
    # Services
    "services_included", "services_excluded",
    # Demographics
    "female_pct", "male_pct", "age_distribution", "race_distribution",
    "scraped_at",
]


def format_vaccination_history(vaccination: Optional[dict]) -> str:
    """Format as "2023-2024 (41.05%), 2022-2023 (73.42%)"."""
    if not vaccination:
        return ""
    return join_labels(
        f"{rate['timeframe']} ({rate['facVaccRate']:.2f}%)"
        for rate in vaccination.get("vacRates") or []
        if rate.get("facVaccRate") is not None
    )


def format_distribution(chart: Optional[List[dict]], labels: Dict[str, str]) -> str:
    """
    Format chart entries as "85-94 (52.63%), 95+ (36.84%)".

    Zero entries are dropped and the rest sorted by descending share.
    """
    if not chart:
        return ""
    entries = [entry for entry in chart if (entry.get("valuePct") or 0) > 0]
    entries.sort(key=lambda entry: entry["valuePct"], reverse=True)
    return join_labels(
        f"{labels.get(entry['label'], entry['label'])} ({entry['valuePct']:.2f}%)"
        for entry in entries
    )


def format_services(services: Optional[dict]) -> Dict[str, str]:
    """Split services into included (True) and excluded (False); None is unknown."""
    included, excluded = [], []
    for key, label in SERVICE_LABELS.items():
        value = (services or {}).get(key)
        if value is True:
            included.append(label)
        elif value is False:
            excluded.append(label)
    return {
        "services_included": join_labels(included),
        "services_excluded": join_labels(excluded),
    }


def summary_to_item(summary: dict) -> WorkItem:
    return WorkItem(
        id=summary["assistedLivingId"],
        attrs={
            "name": summary.get("name"),
            "provider_id": summary.get("providerId"),
            "city": summary.get("city"),
            "county": summary.get("county"),
            "has_profile": summary.get("hasProfile"),
            "total_licensed_beds": summary.get("totalLicensedBeds"),
        },
    )


class Maryland(Jurisdiction):
    code = "md"
    name = "Maryland Assisted Living"
    base_url = "https://healthcarequality.mhcc.maryland.gov/MHCCV2_API_PROD/"
    columns = MD_COLUMNS

    def default_headers(self) -> Dict[str, str]:
        return {"Accept": "application/json"}

    async def discover(self, client: httpx.AsyncClient) -> List[WorkItem]:
        data = await get_json(client, SEARCH_PATH, params={"includeLessThan10Beds": "true"})
        try:
            summaries = data["assistedLivings"]
            items = [summary_to_item(summary) for summary in summaries]
        except (KeyError, TypeError) as e:
            raise ParseError(f"Unexpected search response: {e}") from e
        logger.info("Found %d Maryland facilities", len(items))
        return items

    async def _optional(self, client: httpx.AsyncClient, name: str, item_id: str) -> Optional[dict]:
        url = OPTIONAL_ENDPOINTS[name].format(id=item_id)
        try:
            return await get_json(client, url)
        except (FetchError, httpx.HTTPError) as e:
            logger.debug("  %s endpoint unavailable for %s: %s", name, item_id, e)
            return None

    async def fetch_detail(self, client: httpx.AsyncClient, item: WorkItem) -> Dict[str, Any]:
        names = list(OPTIONAL_ENDPOINTS)
        profile, *optional = await asyncio.gather(
            get_json(client, PROFILE_PATH.format(id=item.id)),
            *(self._optional(client, name, item.id) for name in names),
        )
        extra = dict(zip(names, optional))

        try:
            record = self._build_record(profile, extra)
        except (KeyError, TypeError, AttributeError) as e:
            raise ParseError(f"Malformed profile for {item.id}: {e}") from e

        if self.reports and extra["inspect"]:
            record["reports_downloaded"] = await self._download_reports(item, extra["inspect"])
        return record

    def _build_record(self, profile: dict, extra: Dict[str, Optional[dict]]) -> Dict[str, Any]:
        overview = profile.get("overview") or {}
        vaccination = extra["vaccination"] or {}
        inspect = extra["inspect"] or {}
        patients = extra["patients"] or {}

        # Hospice affiliations only come back from the separate Overview endpoint
        hospice = (extra["overview"] or {}).get("hospiceAffiliations") or []

        record: Dict[str, Any] = {
            "facility_id": profile.get("facilityId"),
            "name": profile.get("providerName"),
            "address1": profile.get("address1"),
            "address2": profile.get("address2"),
            "city": profile.get("city"),
            "state": profile.get("state"),
            "zip_code": profile.get("zipCode"),
            "county": profile.get("county"),
            "phone": profile.get("phone"),
            "website": profile.get("website"),
            "image_url": profile.get("imageUrl"),
            "fac_last_updated": profile.get("facLastUpdated"),

            "total_licensed_beds": overview.get("totalLicensedBeds"),
            "date_facility_first_opened": overview.get("dateFacilityFirstOpened"),
            "is_for_profit": overview.get("isForProfit"),
            "type_of_business_org": overview.get("typeOfBusinessOrg"),
            "owner": overview.get("owner"),
            "level_of_care": overview.get("levelofCare"),
            "is_ccrc": overview.get("isCcrc"),
            "participating_in_medicaid_waiver": overview.get("participatinginMedicaidWaiver"),

            "has_alzheimer_level_mild": overview.get("hasAlzheimerLevelMild"),
            "has_alzheimer_level_mod": overview.get("hasAlzheimerLevelMod"),
            "has_alzheimer_level_sev": overview.get("hasAlzheimerLevelSev"),
            "has_cna_training_program": overview.get("hasCnaTrainingProgram"),
            "hospice_affiliations": " | ".join(
                h["hospiceAffiliationName"] for h in hospice if h.get("hospiceAffiliationName")
            ),

            "has_influenza_gold_star": vaccination.get("isGoldStar", False),
            "has_mandatory_vacc_policy": vaccination.get("mandatoryPolicy", False),
            "has_mandatory_covid_policy": vaccination.get("mandatoryCovidPolicy", False),
            "vaccination_history": format_vaccination_history(vaccination),
            "md_vac_rate_avg": vaccination.get("mdVacRateAvg", 0),

            "latest_def_count_survey": inspect.get("latestDefCountSurvey"),
            "latest_def_count_complaint": inspect.get("latestDefCountComplaint"),
            "latest_def_count_survey_md": inspect.get("latestDefCountSurveyMd", 0),
            "latest_def_count_complaint_md": inspect.get("latestDefCountComplaintMd", 0),

            "female_pct": patients.get("femalePct", 0),
            "male_pct": patients.get("malePct", 0),
            "age_distribution": format_distribution(patients.get("ageChart"), AGE_LABELS),
            "race_distribution": format_distribution(patients.get("raceChart"), RACE_LABELS),

            "scraped_at": datetime.now(timezone.utc).isoformat(),
        }
        for source, column in COST_FIELDS:
            record[column] = overview.get(source)
        record.update(format_services(extra["services"]))
        return record

    async def _download_reports(self, item: WorkItem, inspect: dict) -> int:
        downloaded = 0
        for kind in ("surveyInspections", "complaintInspections"):
            for inspection in inspect.get(kind) or []:
                url = inspection.get("documentUrl")
                if not url:
                    continue
                fallback = f"{kind[:-len('Inspections')]}_{inspection.get('inspectionDate', 'undated')}.pdf"
                if await self.reports.download(url, item.id, fallback):
                    downloaded += 1
        return downloaded
