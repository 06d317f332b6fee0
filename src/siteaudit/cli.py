"""Command-line interface for the site auditor."""

import asyncio
import json
import sys

from siteaudit.config import AuditConfig, settings
from siteaudit.exceptions import SiteAuditError
from siteaudit.logging_config import setup_logging
from siteaudit.models import AnalysisMode, AnalysisReport, ChainAnalysis, VariantProbeResult
from siteaudit.orchestrator import AnalysisOrchestrator
from siteaudit.redirect_analyzer import RedirectAnalyzer
from siteaudit.redirect_resolver import RedirectChainResolver


def _load_config(args) -> AuditConfig:
    if getattr(args, "config", None):
        return AuditConfig.from_file(args.config)
    return AuditConfig.from_env()


def print_analysis(report: AnalysisReport):
    """Print an analysis report in a readable layout.

    Args:
        report: Report returned by the orchestrator
    """
    summary = report.summary()
    print(f"\n{'=' * 60}")
    print(f"Site audit for: {report.seed_url} ({report.mode.value} mode)")
    print(f"{'=' * 60}")
    print(f"\nCompleted in {report.duration_ms / 1000:.1f}s")

    print("\nTasks:")
    for name, status in report.status_by_task.items():
        print(f"  • {name}: {status.value}")

    print("\nSummary:")
    print(f"  • Pages crawled: {summary['pagesCrawled']}")
    print(f"  • Broken links: {summary['brokenLinks']}")
    if summary["speedScore"] is not None:
        print(f"  • Performance score: {summary['speedScore']}/100")
    if summary["mobileFriendly"] is not None:
        print(f"  • Mobile friendly: {'yes' if summary['mobileFriendly'] else 'no'}")

    links = report.results.broken_links
    if links and links.broken:
        print("\nBroken links:")
        for probe in links.broken:
            detail = probe.status if probe.status is not None else probe.error
            print(f"  • {probe.url} ({detail}) from {probe.referer_url}")

    validation = report.results.validation
    if validation:
        print("\nCrawlability:")
        print(f"  • robots.txt: {'found' if validation.robots_txt_exists else 'missing'}")
        print(f"  • sitemap: {validation.sitemap_url or 'missing'}")
        for url in validation.missing_in_sitemap:
            print(f"  • not in sitemap: {url}")

    print(f"\n{'=' * 60}\n")


def print_redirects(url: str, probe: VariantProbeResult, analysis: ChainAnalysis):
    print(f"\nRedirect chain for {url}:")
    for index, hop in enumerate(probe.chain.hops):
        status = hop.status if hop.status is not None else hop.error
        via = f" -> {hop.redirect_type.value}" if hop.redirect_type else ""
        print(f"  {index}. [{status}] {hop.url}{via}")

    print(f"\nFinal: {analysis.final_url} ({analysis.final_status})")
    print(f"Redirects: {analysis.total_redirects}")
    for issue in analysis.security_issues:
        print(f"  ⚠️  security: {issue}")
    for issue in analysis.seo_issues:
        print(f"  💡 seo: {issue}")


async def _analyze(args) -> AnalysisReport:
    config = _load_config(args)
    orchestrator = AnalysisOrchestrator(config=config)
    mode = AnalysisMode.FAST if args.fast else AnalysisMode.FULL
    return await orchestrator.run(args.url, mode)


def analyze_command(args):
    """Run a full site audit."""
    try:
        report = asyncio.run(_analyze(args))
    except SiteAuditError as e:
        print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
        sys.exit(1)

    if args.output == "json":
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print_analysis(report)


async def _redirects(args):
    config = _load_config(args)
    resolver = RedirectChainResolver(
        max_redirects=args.max_redirects,
        timeout=config.redirect_timeout_seconds,
        follow_script_redirects=args.follow_js,
        user_agent=config.user_agent,
    )
    if args.variants:
        probe = await resolver.resolve_variants(args.url)
    else:
        chain = await resolver.resolve(args.url)
        probe = VariantProbeResult(chain=chain if chain.succeeded else None)
    analyzer = RedirectAnalyzer(suspicious_domains=config.suspicious_domains)
    return probe, (analyzer.analyze(probe.chain) if probe.chain else None)


def redirects_command(args):
    """Trace and analyze the redirect chain of a URL."""
    probe, analysis = asyncio.run(_redirects(args))

    if args.output == "json":
        print(json.dumps({
            "redirectChain": probe.chain.to_list() if probe.chain else [],
            "summary": analysis.to_dict() if analysis else None,
            "variantReports": [r.to_dict() for r in probe.reports],
        }, indent=2))
    elif analysis is None:
        print(f"\n❌ Could not resolve {args.url}")
        for report in probe.reports:
            print(f"  • {report.candidate}: {report.error}")
    else:
        print_redirects(args.url, probe, analysis)

    if analysis is None:
        sys.exit(1)


def serve_command(args):
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run(
        "siteaudit.api:app",
        host=args.host,
        port=args.port,
        log_level=args.log_level.lower(),
    )


def main():
    """Main CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Site Audit - crawl a site and check links, redirects, speed and crawlability"
    )

    # Global flags (before subcommands)
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=settings.LOG_LEVEL.upper(),
        help="Set logging verbosity (default: INFO)",
    )
    parser.add_argument(
        "--log-file",
        default=settings.LOG_FILE,
        help="Write logs to file in addition to console",
    )
    parser.add_argument(
        "--config",
        "-c",
        help="JSON configuration file (defaults to environment variables)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    analyze_parser = subparsers.add_parser(
        "analyze", help="Crawl a site and run every auditor against it."
    )
    analyze_parser.add_argument("url", help="Site entry point")
    analyze_parser.add_argument(
        "--fast",
        action="store_true",
        help="Skip the speed and structured data audits",
    )
    analyze_parser.add_argument(
        "--output",
        "-o",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )
    analyze_parser.set_defaults(func=analyze_command)

    redirects_parser = subparsers.add_parser(
        "redirects", help="Trace the redirect chain of a URL."
    )
    redirects_parser.add_argument("url", help="URL to trace")
    redirects_parser.add_argument(
        "--max-redirects",
        type=int,
        default=10,
        help="Redirects followed before the chain is truncated (default: 10)",
    )
    redirects_parser.add_argument(
        "--variants",
        action="store_true",
        help="Also probe http/https and www/non-www permutations",
    )
    redirects_parser.add_argument(
        "--follow-js",
        action="store_true",
        help="Follow literal JavaScript location redirects",
    )
    redirects_parser.add_argument(
        "--output",
        "-o",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )
    redirects_parser.set_defaults(func=redirects_command)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API.")
    serve_parser.add_argument("--host", default=settings.HOST)
    serve_parser.add_argument("--port", type=int, default=settings.PORT)
    serve_parser.set_defaults(func=serve_command)

    args = parser.parse_args()

    setup_logging(
        level=args.log_level,
        log_file=getattr(args, 'log_file', None),
    )

    if hasattr(args, "func"):
        args.func(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
