from image_pipeline.cli import main

main()
