"""
Instance price map.

Prices are an auxiliary feed for the reaper.instances.totalcost statistic.
The URL serves JSON of the form

    {"us-east-1": {"t2.micro": "0.0116", ...}, ...}

with hourly on-demand prices as strings.
"""

import logging
from typing import Dict

import requests

logger = logging.getLogger(__name__)

PricesMap = Dict[str, Dict[str, str]]


def download_prices_map(url: str, timeout: float = 30.0) -> PricesMap:
    """
    Fetch the region -> instance type -> price map.

    Args:
        url: Location of the JSON price document
        timeout: Request timeout in seconds

    Returns:
        The price map

    Raises:
        requests.RequestException: If the download fails
        ValueError: If the document is not a price map
    """
    response = requests.get(url, timeout=timeout)
    response.raise_for_status()
    data = response.json()

    if not isinstance(data, dict):
        raise ValueError("Price document must be a mapping of regions")

    prices: PricesMap = {}
    for region, types in data.items():
        if not isinstance(types, dict):
            logger.warning(f"Skipping prices for {region}: not a mapping")
            continue
        prices[str(region)] = {str(k): str(v) for k, v in types.items()}
    return prices


def total_cost(prices: PricesMap, region: str, instance_type: str, count: int) -> float:
    """
    Hourly cost of count instances of one type.

    Raises:
        KeyError: If there is no price for the type in the region
        ValueError: If the price is not a number
    """
    return count * float(prices[region][instance_type])
