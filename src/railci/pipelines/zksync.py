# zksync.py
# The foundry-zksync "test" workflow: lint, docs, feature checks, zk tests
# against a local era-test-node, and an install check.

from railci.dsl import cache, checkout, job, rollup_node, sh, toolchain, wf

NIGHTLY = "nightly-2024-04-28"
RUNNER_16CORE = "ubuntu-22.04-github-hosted-16core"


def zk_checkout():
    # PR builds test the head commit, not the merge commit
    return checkout("Checkout code", submodules=True, pr_head=True)


def workflow():
    return wf(
        "test",
        job(
            "doctests",
            checkout(),
            toolchain(channel=NIGHTLY),
            cache(cache_on_failure=True),
            sh("cargo test", "cargo test --doc -p forge -p cast@0.0.2", env={"RUST_TEST_THREADS": 2}),
            title="doc tests",
            runs_on=RUNNER_16CORE,
            timeout_minutes=60,
        ),
        job(
            "clippy",
            checkout(),
            toolchain(channel="stable", components=["clippy"]),
            cache(cache_on_failure=True),
            sh(
                "cargo clippy",
                "cargo clippy --workspace --all-targets --all-features",
                env={"RUSTFLAGS": "-Dwarnings"},
            ),
            runs_on="ubuntu-latest",
            timeout_minutes=60,
        ),
        job(
            "fmt",
            checkout(),
            toolchain(channel=NIGHTLY, components=["rustfmt"]),
            sh("cargo fmt", "cargo fmt --all --check"),
            runs_on=RUNNER_16CORE,
            timeout_minutes=60,
        ),
        job(
            "forge-fmt",
            checkout(),
            toolchain(channel=NIGHTLY),
            cache(cache_on_failure=True),
            sh("forge fmt", "cargo run --bin forge -- fmt --check testdata/"),
            title="forge fmt",
            runs_on=RUNNER_16CORE,
            timeout_minutes=60,
        ),
        job(
            "feature-checks",
            checkout(),
            toolchain(channel=NIGHTLY, tools=["cargo-hack"]),
            cache(cache_on_failure=True),
            sh("cargo hack", "cargo hack check"),
            title="feature checks",
            runs_on=RUNNER_16CORE,
            timeout_minutes=60,
        ),
        job(
            "zk-cargo-test",
            zk_checkout(),
            toolchain(channel=NIGHTLY),
            rollup_node(
                mode="fork",
                network="mainnet",
                log="info",
                log_file_path="era_test_node.log",
                target="x86_64-unknown-linux-gnu",
                release_tag="v0.1.0-alpha.25",
            ),
            # TEST_MAINNET_URL comes from the node step
            sh("Run zk tests", "cargo test zk", env={"RUST_BACKTRACE": "full"}),
            runs_on=RUNNER_16CORE,
        ),
        job(
            "zk-smoke-test",
            zk_checkout(),
            toolchain(channel=NIGHTLY),
            sh("Run smoke-test", "cd zk-tests && ./test.sh", env={"RUST_BACKTRACE": "full"}),
            runs_on=RUNNER_16CORE,
        ),
        job(
            "check-ci-install",
            checkout(),
            sh("install foundry-zksync", "./install-foundry-zksync"),
            sh("verify", "forge --version"),
            title="CI install",
            runs_on="ubuntu-latest",
        ),
        branches=("main",),
        env={"CARGO_TERM_COLOR": "always"},
        cancel_in_progress=True,
    )
