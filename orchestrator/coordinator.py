import argparse
import time

from .scenarios import load_scenario
from .config import load_config
from .agents import FrontDoorLoadAgent, ControlAgent

DEFAULT_REPLICAS = ["service1", "service2", "service3"]


def run_scenario(scenario, load_agent, control_agent, replicas, sleep=time.sleep):
    try:
        for i, phase in enumerate(scenario.phases, start=1):
            print(f"=== Phase {i}: {phase.name} (duration: {phase.duration_sec}s) ===")

            for action in phase.actions:
                print(f"  -> Executing action: {action.type} (target={action.target}, params={action.params})")

                if action.type == "start_load":
                    load_agent.start_load(
                        rps=action.params.get("rps", 10),
                        endpoint=action.params.get("endpoint"),
                    )

                elif action.type == "continue_load":
                    load_agent.update_rps(
                        rps=action.params.get("rps", 10),
                        endpoint=action.params.get("endpoint"),
                    )

                elif action.type == "kill_node":
                    # target must match a service name in docker-compose.yml
                    if action.target not in replicas:
                        print(f"  [WARN] kill_node target {action.target} is not a known replica")
                    control_agent.stop_container(action.target)

                elif action.type == "restart_node":
                    if action.target not in replicas:
                        print(f"  [WARN] restart_node target {action.target} is not a known replica")
                    control_agent.start_container(action.target)

            sleep(phase.duration_sec)

    finally:
        print("Stopping load agent...")
        load_agent.stop()
        print("Run complete.")


def main():
    parser = argparse.ArgumentParser(description="Drive load through the balancer and inject replica failures.")
    parser.add_argument(
        "--scenario",
        type=str,
        required=True,
        help="Path to scenario YAML file (e.g. scenarios/replica_failure.yaml)",
    )
    parser.add_argument(
        "--run-id",
        type=str,
        required=True,
        help="Identifier for this run (used for logs/metrics directory)",
    )
    parser.add_argument(
        "--front-door",
        type=str,
        required=False,
        help="Balancer base URL; defaults to front_door in config.yaml.",
    )
    args = parser.parse_args()
    config = load_config()

    scenario = load_scenario(args.scenario)

    print(f"Loaded scenario: {scenario.name}")
    print(f"Description: {scenario.description}\n")

    front_door = args.front_door or config.get("front_door", "http://localhost:9090")
    load_agent = FrontDoorLoadAgent(
        front_door=front_door,
        run_id=args.run_id,
        endpoint=config.get("endpoint", "/api/v1/uuid/get"),
        timeout_sec=config.get("request_timeout_sec", 60),
    )
    replicas = config.get("replicas", DEFAULT_REPLICAS)

    run_scenario(scenario, load_agent, ControlAgent(), replicas)


if __name__ == "__main__":
    main()
