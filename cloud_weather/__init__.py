"""
Cloud Weather: Cross-Cloud Consensus Edition

Fans weather queries out to redundant provider deployments, each of
which fans out to three external weather APIs, and merges the results
into a consensus reading with agreement and reliability scores.

Architecture:
    sources/          - External weather APIs:
                        * openweather.py - OpenWeather (primary)
                        * weatherapi.py  - WeatherAPI.com (secondary)
                        * accuweather.py - AccuWeather (tertiary)
                        * geocoding.py   - place name -> coordinates
    ensemble.py       - Provider-level consensus (LocationAggregator)
    provider_client.py- Local / remote provider deployments
    cross_cloud.py    - Cross-provider consensus (CrossCloudAggregator)
    storage.py        - Store-and-forget persistence (SQLite)
    service.py        - Request orchestration and response shapes

Entry Points:
    main.py           - CLI
"""

__version__ = "1.0.0"
__author__ = "Cloud Weather"
