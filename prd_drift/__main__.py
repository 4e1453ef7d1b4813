from prd_drift.pipeline import main

main()
